"""
Application factory for the sample application.

    from taskapp.main import create_app

    app = create_app()                       # defaults, in-memory database
    app = create_app(Config.load(".", env="local"))

Signed-in users come from the session ("user_id") or from a bearer
token; both resolvers are set on app.auth here.
"""

from typing import Optional
import logging

from portfolion.application import Application
from portfolion.config import Config
from portfolion.health import HealthHandler, cache_check
from portfolion.queue import Job, SyncQueue

from .controllers import (
    AuthController,
    PostApiController,
    PostController,
    TaskApiController,
    TaskController,
    TokenApiController,
)
from .models import PostRepository, TaskRepository, UserRepository
from .routes import register_routes

logger = logging.getLogger(__name__)


def handle_job(job: Job) -> None:
    if job.name == "task.created":
        logger.info("Task %s created", job.payload.get("task_id"))
    else:
        logger.warning("No handler for job %s", job.name)


def create_app(
    config: Optional[Config] = None,
    tasks: Optional[TaskRepository] = None,
    users: Optional[UserRepository] = None,
    posts: Optional[PostRepository] = None,
) -> Application:
    app = Application(config)
    app.use_defaults()
    app.queue = SyncQueue(handle_job)

    database = app.config.get("database.path", ":memory:")
    app.tasks = tasks or TaskRepository(database)
    app.users = users or UserRepository(database)
    app.posts = posts or PostRepository(database)

    app.auth.token_resolver = app.users.find_by_token
    app.auth.user_resolver = app.users.find

    health = HealthHandler(include_system_info=app.config.debug)
    health.add_check("cache", cache_check(app.cache.store()))

    register_routes(
        app,
        TaskController(app.tasks, app.router, app.queue),
        TaskApiController(app.tasks, app.router, app.queue),
        health,
        AuthController(app.users, app.router),
        TokenApiController(app.users),
        PostController(app.posts, app.router, app.auth),
        PostApiController(app.posts, app.router, app.auth),
    )
    return app
