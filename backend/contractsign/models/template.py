from enum import Enum

from sqlalchemy import LargeBinary
from sqlmodel import Field

from contractsign.models.base import TimestampedModel, UUIDModel


class DocumentType(str, Enum):
    FELMEROLAP = "felmerolap"
    VALLALKOZASI_SZERZODES = "vallalkozasi_szerzodes"
    MEGALLAPODAS = "megallapodas"
    SZERZODES_ENERGIAHATEKONYSAG = "szerzodes_energiahatekonysag"
    ADATKEZELESI_HOZZAJARULAS = "adatkezelesi_hozzajarulas"
    TELJESITESI_IGAZOLO = "teljesitesi_igazolo"
    MUNKATERUL_ATADAS = "munkaterul_atadas"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: str | None) -> "DocumentType":
        try:
            return cls((value or "").strip())
        except ValueError:
            return cls.OTHER


class Template(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "templates"

    name: str
    type: str = Field(default=DocumentType.OTHER.value, max_length=64)
    file_bytes: bytes = Field(sa_type=LargeBinary)
