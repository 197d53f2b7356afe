"""
Stored file metadata.

The workflow never reads file contents; it only attaches, detaches and
deletes references. The bytes live under ``UPLOAD_FOLDER`` (see
app/services/file_store.py).
"""

from datetime import datetime, timezone

from app.models import db


class StoredFile(db.Model):
    __tablename__ = "stored_files"

    id = db.Column(db.Integer, primary_key=True)
    user_email = db.Column(db.String(200), nullable=False, index=True, comment="Uploader")
    file_path = db.Column(db.String(500), nullable=False)
    original_name = db.Column(db.String(300))
    mimetype = db.Column(db.String(120))
    size = db.Column(db.Integer, default=0)
    field_name = db.Column(db.String(100), comment="Multipart field the file arrived in")
    module = db.Column(db.String(50), comment="phd_request | phd_proposal")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "original_name": self.original_name,
            "mimetype": self.mimetype,
            "size": self.size,
            "field_name": self.field_name,
            "module": self.module,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<StoredFile {self.id}: {self.original_name}>"
