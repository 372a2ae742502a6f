"""
Record mapping from the source user shape to the destination user shape.

Mapping is pure: no I/O and no dependency on destination state. Passwords are
never carried over; every imported account must go through a reset flow.
"""

import re
import uuid

from user_import.client.exceptions import InvalidRecordError
from user_import.records import ImportOptions, MappedUserRecord, SourceUserRecord

# local@domain.tld, no whitespace
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """Return the natural key form of an email address."""
    return email.strip().lower()


class RecordMapper:
    """Translates ``SourceUserRecord`` values into ``MappedUserRecord`` values."""

    def __init__(self, id_factory=None):
        """
        Args:
            id_factory: Callable returning fresh destination ids (uuid4 strings by default)
        """
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def map(self, record: SourceUserRecord, options: ImportOptions) -> MappedUserRecord:
        """Map one source record.

        Raises:
            InvalidRecordError: If the email is missing or malformed, or if
                ``preserve_ids`` is set and the record carries no source id
        """
        raw_email = (record.email or "").strip()
        if not raw_email:
            raise InvalidRecordError(f"Source user {record.source_id} has no email")
        if not EMAIL_PATTERN.match(raw_email):
            raise InvalidRecordError(f"Source user {record.source_id} has a malformed email")

        if options.preserve_ids:
            if not record.source_id:
                raise InvalidRecordError(f"User {raw_email} has no source id to preserve")
            destination_id = record.source_id
        else:
            destination_id = self._id_factory()

        metadata = None
        if options.import_metadata:
            metadata = {
                "user_metadata": dict(record.user_metadata or {}),
                "app_metadata": dict(record.app_metadata or {}),
            }

        return MappedUserRecord(
            destination_id=destination_id,
            email=normalize_email(raw_email),
            display_email=raw_email,
            display_name=record.display_name,
            avatar_url=record.avatar_url,
            email_verified=record.email_verified,
            phone=record.phone,
            phone_verified=record.phone_verified,
            must_reset_password=True,
            metadata=metadata,
            oauth_links=tuple(record.oauth_links) if options.preserve_oauth else None,
            source_id=record.source_id,
            created_at=record.created_at,
            last_sign_in_at=record.last_sign_in_at,
        )
