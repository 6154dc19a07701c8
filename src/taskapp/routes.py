"""
Route table for the sample application.

    GET     /                         → redirect to /tasks
    GET     /health                   health checks (also /health/live, /health/ready)

    web (session + CSRF)
    GET     /tasks                    tasks.index
    GET     /tasks/create             tasks.create
    POST    /tasks                    tasks.store
    GET     /tasks/{id}               tasks.show
    GET     /tasks/{id}/edit          tasks.edit
    PUT     /tasks/{id}               tasks.update     (form: _method=PUT)
    DELETE  /tasks/{id}               tasks.destroy    (form: _method=DELETE)

    accounts (session + CSRF)
    GET     /register                 register
    POST    /register                 register.store
    GET     /login                    login
    POST    /login                    login.store
    POST    /logout                   logout           auth

    posts (session + CSRF; writes need a signed-in author)
    GET     /posts                    posts.index
    GET     /posts/create             posts.create     auth
    POST    /posts                    posts.store      auth
    GET     /posts/{id}               posts.show
    GET     /posts/{id}/edit          posts.edit       auth
    PUT     /posts/{id}               posts.update     auth
    DELETE  /posts/{id}               posts.destroy    auth

    api (JSON, throttled, CSRF exempt)
    GET     /api/tasks                api.tasks.index
    POST    /api/tasks                api.tasks.store
    GET     /api/tasks/{id}           api.tasks.show
    PUT     /api/tasks/{id}           api.tasks.update
    PATCH   /api/tasks/{id}           api.tasks.patch
    DELETE  /api/tasks/{id}           api.tasks.destroy
    POST    /api/tokens               api.tokens.store     throttle:strict
    DELETE  /api/tokens               api.tokens.destroy   auth
    GET     /api/user                 api.user             auth
    GET     /api/posts                api.posts.index
    POST    /api/posts                api.posts.store      auth
    GET     /api/posts/{id}           api.posts.show
    PATCH   /api/posts/{id}           api.posts.update     auth
    DELETE  /api/posts/{id}           api.posts.destroy    auth
"""

from portfolion.application import Application
from portfolion.health import HealthHandler
from portfolion.http.request import HTTPRequest
from portfolion.http.response import HTTPResponse, redirect
from portfolion.middleware.base import NextHandler, function_middleware

from .controllers import (
    AuthController,
    PostApiController,
    PostController,
    TaskApiController,
    TaskController,
    TokenApiController,
)


@function_middleware
def force_json(request: HTTPRequest, next: NextHandler) -> HTTPResponse:
    """API clients get JSON errors even when they forget the Accept header."""
    if "accept" not in request.headers or "*/*" in request.get_header("accept"):
        request.headers.set("Accept", "application/json")
    return next(request)


def register_routes(
    app: Application,
    web: TaskController,
    api: TaskApiController,
    health: HealthHandler,
    accounts: AuthController,
    tokens: TokenApiController,
    posts: PostController,
    posts_api: PostApiController,
) -> None:
    app.get("/", lambda request: redirect(app.url_for("tasks.index")), name="home")

    app.get("/health", health.handle, name="health")
    app.get("/health/live", health.liveness, name="health.live")
    app.get("/health/ready", health.readiness, name="health.ready")

    with app.group("/tasks", middleware=["csrf"], name="tasks."):
        app.get("", web.index, name="index")
        app.get("/create", web.create, name="create")
        app.post("", web.store, name="store")
        app.get("/{id:int}", web.show, name="show")
        app.get("/{id:int}/edit", web.edit, name="edit")
        app.put("/{id:int}", web.update, name="update")
        app.delete("/{id:int}", web.destroy, name="destroy")

    with app.group(middleware=["csrf"]):
        app.get("/register", accounts.register_form, name="register")
        app.post("/register", accounts.register, name="register.store")
        app.get("/login", accounts.login_form, name="login")
        app.post("/login", accounts.login, name="login.store")
        app.post("/logout", accounts.logout, name="logout", middleware=["auth"])

    with app.group("/posts", middleware=["csrf"], name="posts."):
        app.get("", posts.index, name="index")
        app.get("/create", posts.create, name="create", middleware=["auth"])
        app.post("", posts.store, name="store", middleware=["auth"])
        app.get("/{id:int}", posts.show, name="show")
        app.get("/{id:int}/edit", posts.edit, name="edit", middleware=["auth"])
        app.put("/{id:int}", posts.update, name="update", middleware=["auth"])
        app.delete("/{id:int}", posts.destroy, name="destroy", middleware=["auth"])

    with app.group("/api", middleware=[force_json, "throttle"], name="api."):
        with app.group("/tasks", name="tasks."):
            app.get("", api.index, name="index")
            app.post("", api.store, name="store")
            app.get("/{id:int}", api.show, name="show")
            app.put("/{id:int}", api.update, name="update")
            app.patch("/{id:int}", api.update, name="patch")
            app.delete("/{id:int}", api.destroy, name="destroy")

        app.post("/tokens", tokens.store, name="tokens.store", middleware=["throttle:strict"])
        app.delete("/tokens", tokens.destroy, name="tokens.destroy", middleware=["auth"])
        app.get("/user", tokens.user, name="user", middleware=["auth"])

        with app.group("/posts", name="posts."):
            app.get("", posts_api.index, name="index")
            app.post("", posts_api.store, name="store", middleware=["auth"])
            app.get("/{id:int}", posts_api.show, name="show")
            app.patch("/{id:int}", posts_api.update, name="update", middleware=["auth"])
            app.delete("/{id:int}", posts_api.destroy, name="destroy", middleware=["auth"])
