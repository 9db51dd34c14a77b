from sqlalchemy import Column, String, Text, Float, Index
from sqlalchemy.orm import declarative_base


Base = declarative_base()


class Plant(Base):
    __tablename__ = 'plants'

    id = Column('id', String(36), primary_key=True)
    name = Column('name', String, nullable=False, index=True)
    scientific_name = Column('scientific_name', String)
    family_name = Column('family_name', String)
    description = Column('description', Text)
    characteristics = Column('characteristics', Text, nullable=False)
    confidence = Column('confidence', Float, nullable=False)
    image_path = Column('image_path', String, nullable=False)
    # ISO-8601 в UTC с миллисекундами, строки сортируются хронологически
    created_at = Column('created_at', String(24), nullable=False)
    updated_at = Column('updated_at', String(24), nullable=False)

    __table_args__ = (
        Index('ix_plants_created_at', 'created_at'),
    )
