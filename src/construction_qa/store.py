"""
Chunk Store: relational persistence for projects, documents, page chunks,
callouts, vision findings and chats.

Every read that crosses documents is scoped to a project through a join on
``documents.project_id``. Methods return the dataclasses from ``models``,
never ORM rows, so sessions never leak out of this module.

Example:
    >>> store = ChunkStore("sqlite://")
    >>> project_id = store.create_project("Riverside Clinic")
    >>> doc_id = store.add_document(project_id, "A-Series.pdf", document_type="drawing")
    >>> store.insert_chunk(Chunk(document_id=doc_id, page_number=1, content="..."))
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy import func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .database import (
    CalloutRow,
    Chat,
    ChunkRow,
    Document,
    MessageRow,
    Project,
    VisualFindingRow,
    create_db_engine,
    create_session_factory,
)
from .exceptions import NotFoundError
from .findings import parse_findings
from .models import Callout, Chunk, VisualFinding

logger = logging.getLogger(__name__)


@dataclass
class ChunkFilter:
    """
    Optional restrictions for ``ChunkStore.get_chunks_by_project``.

    Attributes:
        embedded: True for chunks with a vector, False for chunks without
        sheet_numbers: Only chunks on these sheets
        document_ids: Only chunks of these documents
        has_image: True for chunks with a rendered page image
        exclude_ids: Chunk ids to leave out
        limit: Maximum number of chunks returned
        order_by_page: Order by page number first instead of by document
    """
    embedded: Optional[bool] = None
    sheet_numbers: Optional[Iterable[str]] = None
    document_ids: Optional[Iterable[int]] = None
    has_image: Optional[bool] = None
    exclude_ids: Optional[Iterable[int]] = None
    limit: Optional[int] = None
    order_by_page: bool = False


def _chunk_from_row(row: ChunkRow, document: Document) -> Chunk:
    return Chunk(
        id=row.id,
        document_id=row.document_id,
        page_number=row.page_number,
        content=row.content,
        sheet_number=row.sheet_number,
        detail_references=row.detail_references,
        ocr_text=row.ocr_text,
        image_path=row.image_path,
        embedding=row.embedding,
        filename=document.filename,
        document_type=document.type,
    )


def _callout_from_row(row: CalloutRow) -> Callout:
    return Callout(
        id=row.id,
        document_id=row.document_id,
        page_number=row.page_number,
        sheet_number=row.sheet_number,
        detail_reference_raw=row.detail_reference_raw,
        detail_number=row.detail_number,
        target_sheet=row.target_sheet,
    )


def _finding_from_row(row: VisualFindingRow, document: Document) -> VisualFinding:
    return VisualFinding(
        id=row.id,
        document_id=row.document_id,
        page_number=row.page_number,
        sheet_number=row.sheet_number,
        sheet_type=row.sheet_type,
        findings=parse_findings(row.findings),
        embedding=row.embedding,
        filename=document.filename,
        document_type=document.type,
    )


def _chat_to_dict(chat: Chat) -> Dict:
    return {
        "id": chat.id,
        "project_id": chat.project_id,
        "project_name": chat.project.name if chat.project else None,
        "title": chat.title,
        "created_at": chat.created_at,
        "updated_at": chat.updated_at,
    }


def _message_to_dict(row: MessageRow) -> Dict:
    return {
        "id": row.id,
        "chat_id": row.chat_id,
        "role": row.role,
        "content": row.content,
        "citations": list(row.citations or []),
        "created_at": row.created_at,
    }


def _document_to_dict(document: Document) -> Dict:
    return {
        "id": document.id,
        "project_id": document.project_id,
        "filename": document.filename,
        "filepath": document.filepath,
        "type": document.type,
        "page_count": document.page_count,
        "processed": bool(document.processed),
    }


class ChunkStore:
    """
    Persistence for everything the question-answering pipeline reads.

    Args:
        database: SQLAlchemy URL (``"sqlite://"`` for in-memory) or an
                  existing Engine.
    """

    def __init__(self, database: Union[str, Engine] = "sqlite://"):
        if isinstance(database, str):
            self.engine = create_db_engine(database)
        else:
            self.engine = database
        self._session_factory = create_session_factory(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Projects and documents
    # ------------------------------------------------------------------

    def create_project(self, name: str) -> int:
        with self.session_scope() as session:
            project = Project(name=name)
            session.add(project)
            session.flush()
            return project.id

    def get_project(self, project_id: int) -> Dict:
        with self.session_scope() as session:
            project = session.get(Project, project_id)
            if project is None:
                raise NotFoundError("project", project_id)
            return {"id": project.id, "name": project.name, "created_at": project.created_at}

    def add_document(
        self,
        project_id: int,
        filename: str,
        filepath: Optional[str] = None,
        document_type: str = "drawing"
    ) -> int:
        """
        Register an uploaded document.

        Raises:
            NotFoundError: If the project does not exist
        """
        with self.session_scope() as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("project", project_id)
            document = Document(
                project_id=project_id,
                filename=filename,
                filepath=filepath,
                type=document_type,
                processed=False,
            )
            session.add(document)
            session.flush()
            return document.id

    def get_document(self, document_id: int) -> Dict:
        with self.session_scope() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise NotFoundError("document", document_id)
            return _document_to_dict(document)

    def list_documents(self, project_id: int) -> List[Dict]:
        with self.session_scope() as session:
            rows = (
                session.query(Document)
                .filter(Document.project_id == project_id)
                .order_by(Document.id)
                .all()
            )
            return [_document_to_dict(d) for d in rows]

    def list_unprocessed_documents(self, project_id: int) -> List[Dict]:
        with self.session_scope() as session:
            rows = (
                session.query(Document)
                .filter(Document.project_id == project_id, Document.processed == False)  # noqa: E712
                .order_by(Document.id)
                .all()
            )
            return [_document_to_dict(d) for d in rows]

    def mark_document_processed(self, document_id: int, page_count: int) -> None:
        with self.session_scope() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise NotFoundError("document", document_id)
            document.page_count = page_count
            document.processed = True

    # ------------------------------------------------------------------
    # Chunks and callouts
    # ------------------------------------------------------------------

    @staticmethod
    def _add_chunk(session: Session, chunk: Chunk) -> ChunkRow:
        if not chunk.content or not chunk.content.strip():
            raise ValueError(
                f"Refusing to store empty page {chunk.page_number} of document {chunk.document_id}"
            )
        row = ChunkRow(
            document_id=chunk.document_id,
            page_number=chunk.page_number,
            content=chunk.content,
            sheet_number=chunk.sheet_number,
            detail_references=chunk.detail_references or None,
            ocr_text=chunk.ocr_text,
            image_path=chunk.image_path,
            embedding=chunk.embedding,
        )
        session.add(row)
        return row

    @staticmethod
    def _add_callout(session: Session, callout: Callout) -> CalloutRow:
        row = CalloutRow(
            document_id=callout.document_id,
            page_number=callout.page_number,
            sheet_number=callout.sheet_number,
            detail_reference_raw=callout.detail_reference_raw,
            detail_number=callout.detail_number,
            target_sheet=callout.target_sheet,
        )
        session.add(row)
        return row

    def insert_chunk(self, chunk: Chunk) -> Chunk:
        """
        Store one page chunk.

        Returns:
            The chunk with its new id

        Raises:
            ValueError: If the content is empty
            sqlalchemy.exc.IntegrityError: If the page is already stored
        """
        with self.session_scope() as session:
            row = self._add_chunk(session, chunk)
            session.flush()
            chunk.id = row.id
        return chunk

    def insert_callout(self, callout: Callout) -> Callout:
        with self.session_scope() as session:
            row = self._add_callout(session, callout)
            session.flush()
            callout.id = row.id
        return callout

    def store_document_pages(
        self,
        document_id: int,
        pages: Sequence[Tuple[Chunk, List[Callout]]],
        page_count: int
    ) -> Tuple[List[Chunk], int]:
        """
        Store all chunks and callouts of a document in one transaction and
        mark the document processed.

        Returns:
            (stored chunks with ids, number of callouts created)
        """
        stored = []
        callouts_created = 0
        with self.session_scope() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise NotFoundError("document", document_id)

            rows = []
            for chunk, callouts in pages:
                rows.append((chunk, self._add_chunk(session, chunk)))
                for callout in callouts:
                    self._add_callout(session, callout)
                    callouts_created += 1

            document.page_count = page_count
            document.processed = True
            session.flush()

            for chunk, row in rows:
                chunk.id = row.id
                chunk.filename = document.filename
                chunk.document_type = document.type
                stored.append(chunk)

        return stored, callouts_created

    def get_chunks_by_project(
        self,
        project_id: int,
        chunk_filter: Optional[ChunkFilter] = None
    ) -> List[Chunk]:
        """
        Load the chunks of a project, joined with their document.

        Ordered by document then page, or by page first when
        ``chunk_filter.order_by_page`` is set.
        """
        chunk_filter = chunk_filter or ChunkFilter()
        with self.session_scope() as session:
            query = (
                session.query(ChunkRow, Document)
                .join(Document, ChunkRow.document_id == Document.id)
                .filter(Document.project_id == project_id)
            )

            if chunk_filter.embedded is True:
                query = query.filter(ChunkRow.embedding.isnot(None))
            elif chunk_filter.embedded is False:
                query = query.filter(ChunkRow.embedding.is_(None))

            if chunk_filter.sheet_numbers is not None:
                query = query.filter(ChunkRow.sheet_number.in_(list(chunk_filter.sheet_numbers)))
            if chunk_filter.document_ids is not None:
                query = query.filter(ChunkRow.document_id.in_(list(chunk_filter.document_ids)))
            if chunk_filter.exclude_ids:
                query = query.filter(ChunkRow.id.notin_(list(chunk_filter.exclude_ids)))

            if chunk_filter.has_image is True:
                query = query.filter(ChunkRow.image_path.isnot(None))
            elif chunk_filter.has_image is False:
                query = query.filter(ChunkRow.image_path.is_(None))

            if chunk_filter.order_by_page:
                query = query.order_by(ChunkRow.page_number, ChunkRow.id)
            else:
                query = query.order_by(ChunkRow.document_id, ChunkRow.page_number)

            if chunk_filter.limit is not None:
                query = query.limit(chunk_filter.limit)

            return [_chunk_from_row(row, document) for row, document in query.all()]

    def get_chunk_by_sheet_and_filename(
        self,
        project_id: int,
        sheet_number: str,
        filename: str
    ) -> Optional[Chunk]:
        """First page (lowest page number) of ``filename`` on ``sheet_number``."""
        with self.session_scope() as session:
            result = (
                session.query(ChunkRow, Document)
                .join(Document, ChunkRow.document_id == Document.id)
                .filter(
                    Document.project_id == project_id,
                    Document.filename == filename,
                    ChunkRow.sheet_number == sheet_number,
                )
                .order_by(ChunkRow.page_number)
                .first()
            )
            if result is None:
                return None
            return _chunk_from_row(*result)

    def get_chunks_by_filename(self, project_id: int, filename: str) -> List[Chunk]:
        """All chunks of the named document, by page ascending."""
        with self.session_scope() as session:
            rows = (
                session.query(ChunkRow, Document)
                .join(Document, ChunkRow.document_id == Document.id)
                .filter(Document.project_id == project_id, Document.filename == filename)
                .order_by(ChunkRow.page_number)
                .all()
            )
            return [_chunk_from_row(row, document) for row, document in rows]

    def mark_embedded(self, chunk_id: int, vector: List[float]) -> None:
        """Write one chunk's vector (single-row update)."""
        with self.session_scope() as session:
            session.query(ChunkRow).filter(ChunkRow.id == chunk_id).update(
                {ChunkRow.embedding: list(vector)}, synchronize_session=False
            )

    def set_ocr_text(self, chunk_id: int, ocr_text: str) -> None:
        with self.session_scope() as session:
            updated = session.query(ChunkRow).filter(ChunkRow.id == chunk_id).update(
                {ChunkRow.ocr_text: ocr_text}, synchronize_session=False
            )
            if not updated:
                raise NotFoundError("chunk", chunk_id)

    def set_image_path(self, chunk_id: int, image_path: str) -> None:
        with self.session_scope() as session:
            updated = session.query(ChunkRow).filter(ChunkRow.id == chunk_id).update(
                {ChunkRow.image_path: image_path}, synchronize_session=False
            )
            if not updated:
                raise NotFoundError("chunk", chunk_id)

    def get_callouts_touching(
        self,
        project_id: int,
        document_ids: Iterable[int],
        sheets: Iterable[str]
    ) -> List[Callout]:
        """
        Callouts in the given documents whose source or target sheet is one
        of ``sheets``.
        """
        document_ids = list(document_ids)
        sheets = list(sheets)
        if not document_ids or not sheets:
            return []

        with self.session_scope() as session:
            rows = (
                session.query(CalloutRow)
                .join(Document, CalloutRow.document_id == Document.id)
                .filter(
                    Document.project_id == project_id,
                    CalloutRow.document_id.in_(document_ids),
                    or_(
                        CalloutRow.sheet_number.in_(sheets),
                        CalloutRow.target_sheet.in_(sheets),
                    ),
                )
                .order_by(CalloutRow.id)
                .all()
            )
            return [_callout_from_row(r) for r in rows]

    def get_callouts(self, document_id: int) -> List[Callout]:
        with self.session_scope() as session:
            rows = (
                session.query(CalloutRow)
                .filter(CalloutRow.document_id == document_id)
                .order_by(CalloutRow.id)
                .all()
            )
            return [_callout_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Visual findings
    # ------------------------------------------------------------------

    def add_visual_finding(
        self,
        document_id: int,
        page_number: int,
        findings,
        sheet_number: Optional[str] = None,
        sheet_type: Optional[str] = None
    ) -> VisualFinding:
        """
        Store the vision findings of one page.

        At most one finding exists per page; if the page already has one,
        that row is returned unchanged.
        """
        payload = parse_findings(findings)
        with self.session_scope() as session:
            document = session.get(Document, document_id)
            if document is None:
                raise NotFoundError("document", document_id)

            row = (
                session.query(VisualFindingRow)
                .filter(
                    VisualFindingRow.document_id == document_id,
                    VisualFindingRow.page_number == page_number,
                )
                .first()
            )
            if row is None:
                row = VisualFindingRow(
                    document_id=document_id,
                    page_number=page_number,
                    sheet_number=sheet_number,
                    sheet_type=sheet_type,
                    findings=payload.to_dict(),
                )
                session.add(row)
                session.flush()
            else:
                logger.debug("Page %d of document %d already has findings", page_number, document_id)

            return _finding_from_row(row, document)

    def get_visual_findings(
        self,
        project_id: int,
        embedded: Optional[bool] = None
    ) -> List[VisualFinding]:
        with self.session_scope() as session:
            query = (
                session.query(VisualFindingRow, Document)
                .join(Document, VisualFindingRow.document_id == Document.id)
                .filter(Document.project_id == project_id)
            )
            if embedded is True:
                query = query.filter(VisualFindingRow.embedding.isnot(None))
            elif embedded is False:
                query = query.filter(VisualFindingRow.embedding.is_(None))

            rows = query.order_by(VisualFindingRow.document_id, VisualFindingRow.page_number).all()
            return [_finding_from_row(row, document) for row, document in rows]

    def mark_finding_embedded(self, finding_id: int, vector: List[float]) -> None:
        with self.session_scope() as session:
            session.query(VisualFindingRow).filter(VisualFindingRow.id == finding_id).update(
                {VisualFindingRow.embedding: list(vector)}, synchronize_session=False
            )

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------

    def count_embedded(self, project_id: int) -> int:
        """Number of chunks and visual findings in the project with a vector."""
        with self.session_scope() as session:
            chunks = (
                session.query(func.count(ChunkRow.id))
                .select_from(ChunkRow)
                .join(Document, ChunkRow.document_id == Document.id)
                .filter(Document.project_id == project_id, ChunkRow.embedding.isnot(None))
                .scalar()
            )
            findings = (
                session.query(func.count(VisualFindingRow.id))
                .select_from(VisualFindingRow)
                .join(Document, VisualFindingRow.document_id == Document.id)
                .filter(Document.project_id == project_id, VisualFindingRow.embedding.isnot(None))
                .scalar()
            )
            return chunks + findings

    def stats(self, project_id: int) -> Dict[str, int]:
        with self.session_scope() as session:
            def count(model, *criteria):
                return (
                    session.query(func.count(model.id))
                    .select_from(model)
                    .join(Document, model.document_id == Document.id)
                    .filter(Document.project_id == project_id, *criteria)
                    .scalar()
                )

            documents = (
                session.query(func.count(Document.id))
                .filter(Document.project_id == project_id)
                .scalar()
            )
            return {
                "documents": documents,
                "chunks": count(ChunkRow),
                "embedded_chunks": count(ChunkRow, ChunkRow.embedding.isnot(None)),
                "callouts": count(CalloutRow),
                "visual_findings": count(VisualFindingRow),
                "embedded_findings": count(VisualFindingRow, VisualFindingRow.embedding.isnot(None)),
            }

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def create_chat(self, project_id: int, title: str = "New Chat") -> Dict:
        with self.session_scope() as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("project", project_id)
            chat = Chat(project_id=project_id, title=title)
            session.add(chat)
            session.flush()
            return _chat_to_dict(chat)

    def get_chat(self, chat_id: int) -> Dict:
        """
        Raises:
            NotFoundError: If the chat does not exist
        """
        with self.session_scope() as session:
            chat = session.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError("chat", chat_id)
            return _chat_to_dict(chat)

    def update_chat_title(self, chat_id: int, title: str) -> None:
        with self.session_scope() as session:
            chat = session.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError("chat", chat_id)
            chat.title = title

    def add_message(
        self,
        chat_id: int,
        role: str,
        content: str,
        citations: Optional[List[Dict]] = None
    ) -> Dict:
        """Append a message to a chat and touch the chat's ``updated_at``."""
        with self.session_scope() as session:
            chat = session.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError("chat", chat_id)
            row = MessageRow(chat_id=chat_id, role=role, content=content, citations=citations)
            session.add(row)
            chat.updated_at = datetime.utcnow()
            session.flush()
            return _message_to_dict(row)

    def get_messages(self, chat_id: int) -> List[Dict]:
        """Messages of a chat, oldest first."""
        with self.session_scope() as session:
            rows = (
                session.query(MessageRow)
                .filter(MessageRow.chat_id == chat_id)
                .order_by(MessageRow.id)
                .all()
            )
            return [_message_to_dict(r) for r in rows]

    def delete_old_chats(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete chats (and their messages) not updated in ``retention_days``.

        Returns:
            Number of chats deleted
        """
        cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)
        with self.session_scope() as session:
            chats = session.query(Chat).filter(Chat.updated_at < cutoff).all()
            for chat in chats:
                session.delete(chat)
            if chats:
                logger.info("Deleted %d chats older than %d days", len(chats), retention_days)
            return len(chats)
