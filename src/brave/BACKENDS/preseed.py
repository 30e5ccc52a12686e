# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Rendering of the ``lxd init --preseed`` document for a brave host.
"""
from typing import Optional

from jinja2 import Template

from ..CONFIG.settings import HostSettings

PRESEED_TEMPLATE = """config:
{%- if https_address %}
  core.https_address: "{{ https_address }}"
{%- endif %}
{%- if trust %}
  core.trust_password: "{{ trust }}"
{%- endif %}
{%- if not https_address and not trust %} {}{% endif %}
storage_pools:
- name: {{ pool.name }}
  driver: {{ pool.type }}
{%- if pool.type != "dir" %}
  config:
    size: {{ pool.size }}
{%- endif %}
networks:
- name: {{ network.name }}
  type: bridge
  config:
    ipv4.address: {{ network.bridge }}/24
    ipv4.nat: "true"
    ipv6.address: none
profiles:
- name: {{ profile }}
  devices:
    root:
      path: /
      pool: {{ pool.name }}
      type: disk
    eth0:
      name: eth0
      nictype: bridged
      parent: {{ network.name }}
      type: nic
"""


def render_preseed(settings: HostSettings, https_address: Optional[str] = None) -> str:
    """
    Renders the preseed creating the storage pool, bridge network and profile
    described by ``settings``.

    :param settings: Host settings.
    :param https_address: Address the LXD API listens on, e.g. ``[::]:8443``.
    :return: YAML preseed document.
    """
    template = Template(PRESEED_TEMPLATE)
    return template.render(
        https_address=https_address,
        trust=settings.trust,
        pool=settings.storage_pool,
        network=settings.network,
        profile=settings.profile,
    )
