from __future__ import annotations


class BookStatus:
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DELETED = "deleted"

    ALL = (AVAILABLE, UNAVAILABLE, DELETED)
    # Statuses an admin may pick on the add/edit form
    SELECTABLE = (AVAILABLE, UNAVAILABLE)


# Kitap ekleme/düzenleme formunda önerilen kategoriler
CATEGORIES = [
    "Bible Study",
    "Prayer",
    "Devotional",
    "Theology",
    "Christian Living",
    "Biography",
    "Fiction",
    "Children",
    "Youth",
    "Leadership",
    "Evangelism",
    "Missions",
    "Other",
]


class Book:
    """Katalogdaki tek bir kitap kaydını temsil eder."""

    def __init__(self, title: str, author: str, category: str = "", description: str = "",
                 status: str = BookStatus.AVAILABLE, cover_url: str | None = None,
                 id: str | None = None, created_at: str | None = None,
                 updated_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.category = (category or "").strip()
        self.description = (description or "").strip()
        self.status = status
        self.cover_url = cover_url
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.status})"

    @property
    def is_available(self) -> bool:
        return self.status == BookStatus.AVAILABLE

    @property
    def is_deleted(self) -> bool:
        return self.status == BookStatus.DELETED

    def to_dict(self) -> dict:
        # Field names are the persisted record shape
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "description": self.description,
            "status": self.status,
            "coverUrl": self.cover_url,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            category=data.get("category") or "",
            description=data.get("description") or "",
            status=data.get("status") or BookStatus.AVAILABLE,
            cover_url=data.get("coverUrl", data.get("cover_url")),
            created_at=data.get("createdAt", data.get("created_at")),
            updated_at=data.get("updatedAt", data.get("updated_at")),
        )
