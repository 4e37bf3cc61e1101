from datetime import datetime

from lancedb.pydantic import LanceModel, Vector


def get_indexed_document_model(dimension: int) -> type[LanceModel]:
    """Build the LanceDB row model for a fixed embedding dimension."""

    class IndexedDocumentRow(LanceModel):
        id: str
        vector: Vector(dimension)  # type: ignore[valid-type]
        content: str
        project_id: str
        project_name: str
        file_type: str
        file_path: str
        language: str
        tool_version: str
        class_name: str
        namespace: str
        methods: str
        dependencies: str
        token_count: int
        created_at: datetime
        updated_at: datetime

    return IndexedDocumentRow
