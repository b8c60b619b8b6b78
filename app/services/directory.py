import logging

from sqlalchemy.orm import Session

from app.models.person import Person
from app.models.rbac import Permission, PersonRole, Role, RolePermission
from app.services.common import coerce_uuid

logger = logging.getLogger(__name__)


class Directory:
    """Read-only lookups over people, roles and role permissions."""

    @staticmethod
    def get_person(db: Session, person_id) -> Person | None:
        try:
            key = coerce_uuid(person_id)
        except ValueError:
            return None
        if key is None:
            return None
        return db.get(Person, key)

    @staticmethod
    def role_members(db: Session, role_name: str) -> list[Person]:
        return (
            db.query(Person)
            .join(PersonRole, PersonRole.person_id == Person.id)
            .join(Role, Role.id == PersonRole.role_id)
            .filter(Role.name == role_name)
            .filter(Role.is_active.is_(True))
            .filter(Person.is_active.is_(True))
            .order_by(Person.created_at.asc(), Person.email.asc())
            .all()
        )

    @staticmethod
    def role_permission_keys(db: Session, role_id) -> set[str]:
        rows = (
            db.query(Permission.key)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role_id == coerce_uuid(role_id))
            .all()
        )
        return {key for (key,) in rows}

    @staticmethod
    def role_ids_for_person(db: Session, person_id) -> list:
        rows = (
            db.query(PersonRole.role_id)
            .join(Role, Role.id == PersonRole.role_id)
            .filter(PersonRole.person_id == coerce_uuid(person_id))
            .filter(Role.is_active.is_(True))
            .all()
        )
        return [role_id for (role_id,) in rows]

    @staticmethod
    def person_permission_keys(db: Session, person_id) -> set[str]:
        keys: set[str] = set()
        for role_id in Directory.role_ids_for_person(db, person_id):
            keys |= Directory.role_permission_keys(db, role_id)
        return keys

    @staticmethod
    def people_with_permission(db: Session, permission_key: str) -> list[Person]:
        return (
            db.query(Person)
            .join(PersonRole, PersonRole.person_id == Person.id)
            .join(Role, Role.id == PersonRole.role_id)
            .join(RolePermission, RolePermission.role_id == Role.id)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .filter(Permission.key == permission_key)
            .filter(Role.is_active.is_(True))
            .filter(Person.is_active.is_(True))
            .distinct()
            .all()
        )


directory = Directory()
