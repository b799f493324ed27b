from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, Text, LargeBinary


Base = declarative_base()


class Challenges(Base):
    __tablename__ = "challenges"

    # one namespace per hotspot, keyed by big-endian event seconds
    address = Column(Text, nullable=False, primary_key=True)
    time_key = Column(LargeBinary(8), nullable=False, primary_key=True)
    hash = Column(Text, nullable=False)
    fields = Column(Text, nullable=False)


class Hotspots(Base):
    __tablename__ = "hotspots"

    address = Column(Text, nullable=False, primary_key=True)
    name = Column(Text, nullable=False, index=True)
    fields = Column(Text, nullable=False)


class HotspotNames(Base):
    __tablename__ = "hotspot_names"

    name = Column(Text, nullable=False, primary_key=True)
    address = Column(Text, nullable=False)


class Metadata(Base):
    __tablename__ = "metadata"

    key = Column(Text, nullable=False, primary_key=True)
    value = Column(Text, nullable=False)
