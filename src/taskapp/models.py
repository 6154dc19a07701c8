"""
=============================================================================
MODELS AND REPOSITORIES
=============================================================================

    tasks
    ┌─────────────┬─────────┬──────────────────────────────────────────┐
    │ id          │ INTEGER │ primary key                              │
    │ title       │ TEXT    │ required, max 255                        │
    │ description │ TEXT    │ nullable                                 │
    │ status      │ TEXT    │ pending | in_progress | completed        │
    │ priority    │ TEXT    │ nullable: low | medium | high            │
    │ due_date    │ TEXT    │ nullable, ISO date                       │
    │ created_at  │ TEXT    │ ISO timestamp (UTC)                      │
    │ updated_at  │ TEXT    │ ISO timestamp (UTC)                      │
    └─────────────┴─────────┴──────────────────────────────────────────┘

    users
    ┌─────────────┬─────────┬──────────────────────────────────────────┐
    │ id          │ INTEGER │ primary key                              │
    │ name        │ TEXT    │ required, max 255                        │
    │ email       │ TEXT    │ unique                                   │
    │ password    │ TEXT    │ pbkdf2_sha256$iterations$salt$hash       │
    │ api_token   │ TEXT    │ nullable, sha256 of the issued token     │
    │ created_at  │ TEXT    │ ISO timestamp (UTC)                      │
    └─────────────┴─────────┴──────────────────────────────────────────┘

    posts
    ┌──────────────┬─────────┬─────────────────────────────────────────┐
    │ id           │ INTEGER │ primary key                             │
    │ user_id      │ INTEGER │ author                                  │
    │ title        │ TEXT    │ required, max 255                       │
    │ slug         │ TEXT    │ unique, derived from the title          │
    │ content      │ TEXT    │ required                                │
    │ published_at │ TEXT    │ nullable; NULL means draft              │
    │ created_at   │ TEXT    │ ISO timestamp (UTC)                     │
    │ updated_at   │ TEXT    │ ISO timestamp (UTC)                     │
    └──────────────┴─────────┴─────────────────────────────────────────┘

Rows and model objects convert explicitly (from_row / to_row); nothing
is copied by attribute reflection.

Each repository holds one sqlite3 connection shared by every worker
thread, serialized by a lock. ":memory:" databases only exist inside
that one connection, which is also why it must be shared.

=============================================================================
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
import hashlib
import logging
import re
import secrets
import sqlite3
import threading

from portfolion.errors import HTTPError

logger = logging.getLogger(__name__)

STATUSES = ("pending", "in_progress", "completed")
PRIORITIES = ("low", "medium", "high")

COLUMNS = ("title", "description", "status", "priority", "due_date")

# sqlite INTEGER is a signed 64-bit value; larger ids cannot exist
MAX_ID = 2 ** 63 - 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    title       TEXT NOT NULL,
    description TEXT,
    status      TEXT NOT NULL DEFAULT 'pending',
    priority    TEXT,
    due_date    TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
)
"""

USERS_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    email       TEXT NOT NULL UNIQUE,
    password    TEXT NOT NULL,
    api_token   TEXT UNIQUE,
    created_at  TEXT NOT NULL
)
"""

POSTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS posts (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL,
    title        TEXT NOT NULL,
    slug         TEXT NOT NULL UNIQUE,
    content      TEXT NOT NULL,
    published_at TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
)
"""

POST_COLUMNS = ("title", "content", "published_at")

HASH_ALGORITHM = "pbkdf2_sha256"
HASH_ITERATIONS = 100000


class TaskNotFoundError(HTTPError):
    status_code = 404
    default_message = "Task not found."

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found.")


class PostNotFoundError(HTTPError):
    status_code = 404
    default_message = "Post not found."

    def __init__(self, post_id: int):
        self.post_id = post_id
        super().__init__(f"Post {post_id} not found.")


class ForbiddenError(HTTPError):
    """The signed-in user may not touch this resource."""

    status_code = 403
    default_message = "This action is unauthorized."


def utcnow() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class Task:
    title: str
    status: str = "pending"
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Task":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            due_date=row["due_date"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_row(self) -> Dict[str, Any]:
        """Writable columns only; id and timestamps belong to the repository."""
        return {name: getattr(self, name) for name in COLUMNS}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def status_label(self) -> str:
        return self.status.replace("_", " ").title()


class SqliteRepository:
    """One locked connection plus the table it owns."""

    schema = ""

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._connection = sqlite3.connect(path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock, self._connection:
            self._connection.execute(self.schema)
        logger.debug("%s ready (%s)", type(self).__name__, path)

    @staticmethod
    def storable_id(row_id: int) -> bool:
        return 0 < row_id <= MAX_ID

    def _fetchone(self, query: str, params: Any = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(query, params).fetchone()

    def _fetchall(self, query: str, params: Any = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(query, params).fetchall()

    def close(self) -> None:
        with self._lock:
            self._connection.close()


class TaskRepository(SqliteRepository):
    schema = SCHEMA

    def all(self, status: Optional[str] = None) -> List[Task]:
        query = "SELECT * FROM tasks"
        params: tuple = ()
        if status:
            query += " WHERE status = ?"
            params = (status,)
        query += " ORDER BY id DESC"
        with self._lock:
            rows = self._connection.execute(query, params).fetchall()
        return [Task.from_row(row) for row in rows]

    def find(self, task_id: int) -> Optional[Task]:
        if not self.storable_id(task_id):
            return None
        with self._lock:
            row = self._connection.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return Task.from_row(row) if row else None

    def find_or_fail(self, task_id: int) -> Task:
        task = self.find(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def create(self, data: Mapping[str, Any]) -> Task:
        task = Task(**{name: data[name] for name in COLUMNS if name in data})
        row = task.to_row()
        now = utcnow()
        with self._lock, self._connection:
            cursor = self._connection.execute(
                "INSERT INTO tasks (title, description, status, priority, due_date, created_at, updated_at) "
                "VALUES (:title, :description, :status, :priority, :due_date, :created_at, :updated_at)",
                {**row, "created_at": now, "updated_at": now},
            )
            task_id = cursor.lastrowid
        logger.info("Created task %d", task_id)
        return self.find_or_fail(task_id)

    def update(self, task_id: int, data: Mapping[str, Any]) -> Task:
        """Change the given columns only (PATCH semantics)."""
        if not self.storable_id(task_id):
            raise TaskNotFoundError(task_id)
        changes = {name: data[name] for name in COLUMNS if name in data}
        if not changes:
            return self.find_or_fail(task_id)

        assignments = ", ".join(f"{name} = :{name}" for name in changes)
        with self._lock, self._connection:
            cursor = self._connection.execute(
                f"UPDATE tasks SET {assignments}, updated_at = :updated_at WHERE id = :id",
                {**changes, "updated_at": utcnow(), "id": task_id},
            )
            updated = cursor.rowcount
        if not updated:
            raise TaskNotFoundError(task_id)
        logger.info("Updated task %d (%s)", task_id, ", ".join(changes))
        return self.find_or_fail(task_id)

    def delete(self, task_id: int) -> bool:
        if not self.storable_id(task_id):
            return False
        with self._lock, self._connection:
            cursor = self._connection.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted task %d", task_id)
        return deleted

    def count(self) -> int:
        with self._lock:
            return self._connection.execute("SELECT COUNT(*) FROM tasks").fetchone()[0]


# =============================================================================
# USERS
# =============================================================================

def hash_password(password: str, salt: Optional[str] = None) -> str:
    """PBKDF2-SHA256 with a random salt, stored as algorithm$iterations$salt$hash."""
    if salt is None:
        salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), HASH_ITERATIONS
    ).hex()
    return f"{HASH_ALGORITHM}${HASH_ITERATIONS}${salt}${digest}"


def check_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, digest = encoded.split("$")
    except ValueError:
        return False
    if algorithm != HASH_ALGORITHM or not iterations.isdigit():
        return False
    computed = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations)
    ).hex()
    return secrets.compare_digest(computed, digest)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class User:
    name: str
    email: str
    password: str = field(default="", repr=False)
    api_token: Optional[str] = field(default=None, repr=False)
    id: Optional[int] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password=row["password"],
            api_token=row["api_token"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Public fields; the password hash and token never leave the server."""
        return {"id": self.id, "name": self.name, "email": self.email, "created_at": self.created_at}


class UserRepository(SqliteRepository):
    schema = USERS_SCHEMA

    def find(self, user_id: Any) -> Optional[User]:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None
        if not self.storable_id(user_id):
            return None
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return User.from_row(row) if row else None

    def find_by_email(self, email: str) -> Optional[User]:
        row = self._fetchone("SELECT * FROM users WHERE email = ?", (email.strip().lower(),))
        return User.from_row(row) if row else None

    def find_by_token(self, token: str) -> Optional[User]:
        """Resolve a plain bearer token; only its hash is stored."""
        row = self._fetchone("SELECT * FROM users WHERE api_token = ?", (hash_token(token),))
        return User.from_row(row) if row else None

    def create(self, name: str, email: str, password: str) -> User:
        """
        Raises:
            ValueError: If the email is already registered.
        """
        email = email.strip().lower()
        try:
            with self._lock, self._connection:
                cursor = self._connection.execute(
                    "INSERT INTO users (name, email, password, created_at) VALUES (?, ?, ?, ?)",
                    (name, email, hash_password(password), utcnow()),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Email already registered: {email}") from e
        logger.info("Registered user %d", cursor.lastrowid)
        return self.find(cursor.lastrowid)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        user = self.find_by_email(email)
        if user is None or not check_password(password, user.password):
            logger.info("Failed login for %s", email)
            return None
        return user

    def issue_token(self, user: User) -> str:
        """Replace the user's API token; the plain value is returned once."""
        token = secrets.token_urlsafe(32)
        with self._lock, self._connection:
            self._connection.execute(
                "UPDATE users SET api_token = ? WHERE id = ?", (hash_token(token), user.id)
            )
        logger.info("Issued API token for user %d", user.id)
        return token

    def revoke_token(self, user: User) -> None:
        with self._lock, self._connection:
            self._connection.execute("UPDATE users SET api_token = NULL WHERE id = ?", (user.id,))

    def count(self) -> int:
        return self._fetchone("SELECT COUNT(*) FROM users")[0]


# =============================================================================
# POSTS
# =============================================================================

def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "post"


@dataclass
class Post:
    user_id: int
    title: str
    content: str
    slug: str = ""
    published_at: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Post":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            slug=row["slug"],
            content=row["content"],
            published_at=row["published_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def owned_by(self, user: Optional[User]) -> bool:
        return user is not None and user.id == self.user_id


class PostRepository(SqliteRepository):
    schema = POSTS_SCHEMA

    def all(self, published_only: bool = False) -> List[Post]:
        query = "SELECT * FROM posts"
        if published_only:
            query += " WHERE published_at IS NOT NULL"
        return [Post.from_row(row) for row in self._fetchall(query + " ORDER BY id DESC")]

    def find(self, post_id: int) -> Optional[Post]:
        if not self.storable_id(post_id):
            return None
        row = self._fetchone("SELECT * FROM posts WHERE id = ?", (post_id,))
        return Post.from_row(row) if row else None

    def find_or_fail(self, post_id: int) -> Post:
        post = self.find(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    def create(self, user_id: int, data: Mapping[str, Any]) -> Post:
        now = utcnow()
        with self._lock, self._connection:
            slug = self._unique_slug(slugify(data["title"]))
            cursor = self._connection.execute(
                "INSERT INTO posts (user_id, title, slug, content, published_at, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user_id, data["title"], slug, data["content"], data.get("published_at"), now, now),
            )
        logger.info("Created post %d (%s)", cursor.lastrowid, slug)
        return self.find_or_fail(cursor.lastrowid)

    def update(self, post_id: int, data: Mapping[str, Any]) -> Post:
        if not self.storable_id(post_id):
            raise PostNotFoundError(post_id)
        changes = {name: data[name] for name in POST_COLUMNS if name in data}
        if not changes:
            return self.find_or_fail(post_id)

        assignments = ", ".join(f"{name} = :{name}" for name in changes)
        with self._lock, self._connection:
            cursor = self._connection.execute(
                f"UPDATE posts SET {assignments}, updated_at = :updated_at WHERE id = :id",
                {**changes, "updated_at": utcnow(), "id": post_id},
            )
            updated = cursor.rowcount
        if not updated:
            raise PostNotFoundError(post_id)
        logger.info("Updated post %d (%s)", post_id, ", ".join(changes))
        return self.find_or_fail(post_id)

    def delete(self, post_id: int) -> bool:
        if not self.storable_id(post_id):
            return False
        with self._lock, self._connection:
            deleted = self._connection.execute("DELETE FROM posts WHERE id = ?", (post_id,)).rowcount > 0
        if deleted:
            logger.info("Deleted post %d", post_id)
        return deleted

    def count(self) -> int:
        return self._fetchone("SELECT COUNT(*) FROM posts")[0]

    def _unique_slug(self, base: str) -> str:
        """Caller holds the lock."""
        taken = {
            row[0] for row in self._connection.execute(
                "SELECT slug FROM posts WHERE slug = ? OR slug LIKE ?", (base, f"{base}-%")
            )
        }
        slug, suffix = base, 2
        while slug in taken:
            slug, suffix = f"{base}-{suffix}", suffix + 1
        return slug
