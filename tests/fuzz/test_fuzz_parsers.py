import random
import string

from brave.errors import BraveError
from brave.MODELS.service_definition import PortRule
from brave.PARSERS.bravefile_parser import BravefileParser
from brave.PARSERS.compose_parser import ComposeParser
from brave.REGISTRY.image_reference import BraveImage
from brave.UTILS.formatting import parse_size

YAMLISH = string.ascii_letters + string.digits + ":-/ \n[]{},'\"#&*!|>"


def random_string(rng, length, alphabet=string.printable):
    return ''.join(rng.choice(alphabet) for _ in range(length))


def _only_brave_errors(parse, alphabet, max_length, seed):
    """Malformed input must surface as a brave error, never as a crash."""
    rng = random.Random(seed)
    for _ in range(200):
        content = random_string(rng, rng.randint(0, max_length), alphabet)
        try:
            parse(content)
        except BraveError:
            pass


def test_fuzz_bravefile_parser():
    _only_brave_errors(BravefileParser().parse_from_string, YAMLISH, 300, seed=1)


def test_fuzz_compose_parser():
    _only_brave_errors(ComposeParser().parse_from_string, YAMLISH, 300, seed=2)


def test_fuzz_image_reference():
    _only_brave_errors(BraveImage.parse, string.printable, 40, seed=3)
    _only_brave_errors(BraveImage.parse_legacy, string.printable, 40, seed=4)


def test_fuzz_port_rule():
    _only_brave_errors(PortRule.parse, string.digits + ":-x ", 12, seed=5)


def test_fuzz_size_quantity():
    _only_brave_errors(parse_size, string.digits + ".kMGiB ", 8, seed=6)
