from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PDF_MIME_TYPE = "application/pdf"


class MessageRef(BaseModel):
    id: str
    thread_id: str | None = Field(default=None, alias="threadId")


class MessagePart(BaseModel):
    """
    One node of a Gmail message payload.

    Immutable; `parts` holds the children in declared order and may nest
    to any depth (multipart/mixed > multipart/alternative > ...).
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    part_id: str | None = Field(default=None, alias="partId")
    mime_type: str = Field(default="", alias="mimeType")
    filename: str = ""
    headers: tuple[dict, ...] = ()
    attachment_id: str | None = None
    size: int = 0
    parts: tuple["MessagePart", ...] = ()

    @classmethod
    def from_api(cls, payload: dict) -> "MessagePart":
        """Build the tree from a `users.messages.get?format=full` payload"""
        body = payload.get("body") or {}
        return cls(
            part_id=payload.get("partId"),
            mime_type=payload.get("mimeType", ""),
            filename=payload.get("filename") or "",
            headers=tuple(payload.get("headers") or ()),
            attachment_id=body.get("attachmentId"),
            size=body.get("size", 0),
            parts=tuple(cls.from_api(p) for p in payload.get("parts") or ()),
        )

    def header(self, name: str) -> str:
        name = name.lower()
        for h in self.headers:
            if h.get("name", "").lower() == name:
                return h.get("value", "")
        return ""

    @property
    def is_pdf_attachment(self) -> bool:
        return self.mime_type.lower() == PDF_MIME_TYPE and bool(self.filename.strip())


def find_pdf_part(root: MessagePart) -> MessagePart | None:
    """
    Depth-first search for the first qualifying PDF part.

    Qualifying = declared application/pdf type, a non-empty filename and an
    attachment id to download it by. Children are visited in declared order.
    """
    stack = [root]
    while stack:
        part = stack.pop()
        if part.is_pdf_attachment and part.attachment_id:
            return part
        # reversed so the first child is popped first
        stack.extend(reversed(part.parts))
    return None


class Candidate(BaseModel):
    """One message/attachment pair considered for intake. Bytes are fetched lazily."""
    message_id: str
    attachment_id: str | None = None
    filename: str | None = None
    sender: str = ""
    subject: str = ""
    data: bytes | None = None


class EmailSummary(BaseModel):
    """Header view of one matching message, as listed before a scan"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    sender: str = Field(default="", alias="from")
    subject: str = ""
    date: str = ""
    has_attachment: bool = True


class EmailListing(BaseModel):
    """`emails` holds at most a preview; `total` counts every match"""
    emails: list[EmailSummary] = []
    total: int = 0
