"""
SQLAlchemy schema and engine setup.

Vectors, detail references, findings and citations are JSON columns. JSON
columns use ``none_as_null`` so that a missing vector is a real SQL NULL
and ``embedding IS NULL`` selects the rows an embedding pass still owes.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    documents = relationship("Document", back_populates="project", cascade="all, delete-orphan")
    chats = relationship("Chat", back_populates="project", cascade="all, delete-orphan")


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    filepath = Column(String(1024))
    type = Column(String(20), default="drawing")  # drawing | spec
    page_count = Column(Integer)
    processed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    project = relationship("Project", back_populates="documents")
    chunks = relationship("ChunkRow", back_populates="document", cascade="all, delete-orphan")
    callouts = relationship("CalloutRow", back_populates="document", cascade="all, delete-orphan")
    visual_findings = relationship("VisualFindingRow", back_populates="document", cascade="all, delete-orphan")


class ChunkRow(Base):
    __tablename__ = "chunks"
    __table_args__ = (UniqueConstraint("document_id", "page_number", name="uq_chunk_page"),)

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    page_number = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    sheet_number = Column(String(20), index=True)
    detail_references = Column(JSON(none_as_null=True))
    ocr_text = Column(Text)
    image_path = Column(String(1024))
    embedding = Column(JSON(none_as_null=True))

    document = relationship("Document", back_populates="chunks")


class CalloutRow(Base):
    __tablename__ = "callouts"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    page_number = Column(Integer, nullable=False)
    sheet_number = Column(String(20), index=True)
    detail_reference_raw = Column(String(50), nullable=False)
    detail_number = Column(Integer, nullable=False)
    target_sheet = Column(String(20), nullable=False, index=True)

    document = relationship("Document", back_populates="callouts")


class VisualFindingRow(Base):
    __tablename__ = "visual_findings"
    __table_args__ = (UniqueConstraint("document_id", "page_number", name="uq_finding_page"),)

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    page_number = Column(Integer, nullable=False)
    sheet_number = Column(String(20))
    sheet_type = Column(String(50))
    findings = Column(JSON(none_as_null=True))
    embedding = Column(JSON(none_as_null=True))

    document = relationship("Document", back_populates="visual_findings")


class Chat(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), default="New Chat")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="chats")
    messages = relationship(
        "MessageRow",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="MessageRow.id",
    )


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    citations = Column(JSON(none_as_null=True))
    created_at = Column(DateTime, default=datetime.utcnow)

    chat = relationship("Chat", back_populates="messages")


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine and make sure all tables exist.

    SQLite connections are shared with the embedding worker threads, so
    ``check_same_thread`` is disabled; an in-memory database additionally
    needs a single static connection or every session would see an empty
    database.
    """
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)
