from __future__ import annotations


class Role:
    USER = "user"
    ADMIN = "admin"

    ALL = (USER, ADMIN)


# Landing page after a successful login, per role
HOME_ROUTES = {
    Role.ADMIN: "/admin/dashboard",
    Role.USER: "/user/dashboard",
}


class User:
    """Stored profile of a registered member or administrator."""

    def __init__(self, id: str, name: str, email: str, role: str = Role.USER,
                 created_at: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip().lower()
        self.role = role
        self.created_at = created_at

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def home_route(self) -> str:
        return HOME_ROUTES.get(self.role, "/")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "createdAt": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            role=data.get("role") or Role.USER,
            created_at=data.get("createdAt", data.get("created_at")),
        )
