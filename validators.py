import re
from typing import Dict, Optional

from book import BookStatus
from errors import ValidationError
from user import Role

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class TextValidator:
    """Minimum-length checks used by the book and account forms."""

    @staticmethod
    def min_length(text: Optional[str], length: int) -> bool:
        if text is None:
            return False
        return len(text.strip()) >= length

    @staticmethod
    def is_email(text: Optional[str]) -> bool:
        if not text:
            return False
        return bool(EMAIL_RE.match(text.strip()))


class BookFormValidator:
    MESSAGES = {
        "title": "Title must be at least 2 characters.",
        "author": "Author must be at least 2 characters.",
        "category": "Category is required.",
        "description": "Description must be at least 10 characters.",
        "status": "Status must be available or unavailable.",
    }
    MIN_LENGTHS = {"title": 2, "author": 2, "category": 2, "description": 10}

    @classmethod
    def validate(cls, data: Dict[str, Optional[str]], partial: bool = False) -> None:
        """Raise ValidationError listing every bad field.

        With ``partial`` only the fields present (not None) are checked, as on edit.
        """
        errors: Dict[str, str] = {}
        for name, length in cls.MIN_LENGTHS.items():
            value = data.get(name)
            if partial and value is None:
                continue
            if not TextValidator.min_length(value, length):
                errors[name] = cls.MESSAGES[name]
        status = data.get("status")
        if not (partial and status is None) and status not in BookStatus.SELECTABLE:
            errors["status"] = cls.MESSAGES["status"]
        if errors:
            raise ValidationError(errors)


class AccountFormValidator:

    @staticmethod
    def validate_registration(name: Optional[str], email: Optional[str], password: Optional[str],
                              role: Optional[str]) -> None:
        errors: Dict[str, str] = {}
        if not TextValidator.min_length(name, 2):
            errors["name"] = "Name must be at least 2 characters."
        if not TextValidator.is_email(email):
            errors["email"] = "Please enter a valid email address."
        if password is None or len(password) < 6:
            errors["password"] = "Password must be at least 6 characters."
        if role not in Role.ALL:
            errors["role"] = "Role must be user or admin."
        if errors:
            raise ValidationError(errors)

    @staticmethod
    def validate_login(email: Optional[str], password: Optional[str], role: Optional[str]) -> None:
        errors: Dict[str, str] = {}
        if not TextValidator.is_email(email):
            errors["email"] = "Please enter a valid email address."
        if not password:
            errors["password"] = "Password is required."
        if role not in Role.ALL:
            errors["role"] = "Role must be user or admin."
        if errors:
            raise ValidationError(errors)
