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
Unit record store.

One SQLite table of unit records. The database is opened for each operation
and disposed of afterwards, so nothing is held across a deployment.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import String, Text, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from ..errors import PersistenceError
from ..MODELS.unit import UnitData, UnitRecord

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Base(DeclarativeBase):
    pass


class UnitRow(Base):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    date: Mapped[str] = mapped_column(String(32))
    data: Mapped[str] = mapped_column(Text)

    def to_record(self) -> UnitRecord:
        return UnitRecord(uid=self.uid, name=self.name, date=self.date,
                          data=UnitData(**json.loads(self.data)))


class UnitStore:
    """
    Persistence of unit records keyed by unit name.

    :param path: SQLite database file. Its directory is created on first use.
    """

    def __init__(self, path):
        self.path = Path(path)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(f"sqlite:///{self.path}")
        try:
            Base.metadata.create_all(engine)
            with Session(engine) as session:
                yield session
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"{operation}: {e}") from e
        finally:
            engine.dispose()

    def insert_unit(self, name: str, data: UnitData) -> UnitRecord:
        """
        Adds a record for a freshly deployed unit.

        :return: The stored record, with its generated uid and timestamp.
        :raises PersistenceError: If the database cannot be written.
        """
        record = UnitRecord(
            uid=str(uuid.uuid1()),
            name=name,
            date=datetime.now().strftime(DATE_FORMAT),
            data=data,
        )
        with self._session(f"failed to insert record of unit {name!r}") as session:
            session.add(UnitRow(uid=record.uid, name=record.name, date=record.date,
                                data=json.dumps(data.model_dump())))
        logger.debug("stored record %s for unit %s", record.uid, name)
        return record

    def delete_unit(self, name: str) -> int:
        """
        Removes every record for a unit name.

        :return: Number of records removed.
        """
        with self._session(f"failed to delete record of unit {name!r}") as session:
            result = session.execute(delete(UnitRow).where(UnitRow.name == name))
            return result.rowcount or 0

    def get_unit(self, name: str) -> Optional[UnitRecord]:
        with self._session(f"failed to read record of unit {name!r}") as session:
            row = session.scalars(select(UnitRow).where(UnitRow.name == name)
                                  .order_by(UnitRow.id.desc())).first()
            return row.to_record() if row else None

    def list_units(self) -> List[UnitRecord]:
        with self._session("failed to list unit records") as session:
            return [row.to_record() for row in session.scalars(select(UnitRow).order_by(UnitRow.id))]
