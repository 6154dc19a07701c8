"""
=============================================================================
CONTROLLERS
=============================================================================

    TaskController      HTML forms, redirect-after-POST, flash messages
    TaskApiController   JSON in, JSON out, errors as JSON
    AuthController      register, login and logout through the session
    TokenApiController  trade email + password for a bearer token
    PostController      blog posts; writing requires a signed-in author
    PostApiController   the same posts as JSON, authorized by bearer token

Tasks validate with TASK_RULES. PATCH validates only the fields sent, so
clients can change one column without resending the rest.

Drafts (posts without published_at) are only visible to their author,
and only the author may edit or delete a post.

=============================================================================
"""

from typing import Any, Dict, Optional
import logging

from portfolion.errors import AuthenticationError, ValidationError
from portfolion.http.request import HTTPRequest
from portfolion.http.response import HTTPResponse, created, html, json_response, no_content, redirect
from portfolion.http.router import Router
from portfolion.middleware.auth import AuthMiddleware
from portfolion.validation import Validator

from . import views
from .models import (
    PRIORITIES,
    STATUSES,
    ForbiddenError,
    Post,
    PostNotFoundError,
    PostRepository,
    TaskNotFoundError,
    TaskRepository,
    User,
    UserRepository,
    utcnow,
)

logger = logging.getLogger(__name__)

TASK_RULES = {
    "title": "required|string|max:255",
    "description": "nullable|string",
    "status": f"required|in:{','.join(STATUSES)}",
    "priority": f"nullable|in:{','.join(PRIORITIES)}",
    "due_date": "nullable|date",
}


def task_id(request: HTTPRequest) -> int:
    return int(request.route_params["id"])


def partial_rules(data: Dict[str, Any]) -> Dict[str, str]:
    """TASK_RULES restricted to the keys present in data."""
    return {name: rules for name, rules in TASK_RULES.items() if name in data}


REGISTER_RULES = {
    "name": "required|string|max:255",
    "email": "required|email|max:255",
    "password": "required|string|min:8|confirmed",
}

LOGIN_RULES = {
    "email": "required|email",
    "password": "required|string",
}

POST_RULES = {
    "title": "required|string|max:255",
    "content": "required|string",
    "publish": "nullable|boolean",
}


def post_id(request: HTTPRequest) -> int:
    return int(request.route_params["id"])


def api_payload(request: HTTPRequest) -> Dict[str, Any]:
    if request.is_json and not isinstance(request.json, dict):
        raise ValidationError({"body": ["The request body must be a JSON object."]})
    return {key: value for key, value in request.all().items() if not key.startswith("_")}


def back_with_errors(request: HTTPRequest, errors: Dict[str, Any], fallback: str) -> HTTPResponse:
    """Flash errors and input (never passwords) and go back to the form."""
    session = request.session
    session.flash("errors", errors)
    session.flash_input({key: value for key, value in request.all().items() if "password" not in key})
    session.flash("error", "Please fix the errors below.")
    return redirect(request.get_header("referer") or fallback)


def publication(data: Dict[str, Any], post: Optional[Post] = None) -> Dict[str, Any]:
    """Turn the publish flag into published_at, keeping an existing date."""
    data = dict(data)
    if "publish" not in data:
        return data
    if not data.pop("publish"):
        data["published_at"] = None
    elif post is None or not post.is_published:
        data["published_at"] = utcnow()
    return data


class TaskController:
    def __init__(self, tasks: TaskRepository, router: Router, queue: Any):
        self.tasks = tasks
        self.router = router
        self.queue = queue
        self.validator = Validator(TASK_RULES)

    def index(self, request: HTTPRequest) -> HTTPResponse:
        status = request.get_query("status")
        if status not in STATUSES:
            status = None
        tasks = self.tasks.all(status=status)
        return html(views.task_list(tasks, self.router.url_for, request.session, status))

    def create(self, request: HTTPRequest) -> HTTPResponse:
        return html(views.task_form(self.router.url_for, request.session))

    def store(self, request: HTTPRequest) -> HTTPResponse:
        result = self.validator.check(request.all())
        if not result.valid:
            return back_with_errors(request, result.errors, self.router.url_for("tasks.create"))

        task = self.tasks.create(result.data)
        self.queue.enqueue({"event": "task.created", "task_id": task.id})
        request.session.flash("success", "Task created successfully.")
        return redirect(self.router.url_for("tasks.index"))

    def show(self, request: HTTPRequest) -> HTTPResponse:
        task = self.tasks.find_or_fail(task_id(request))
        return html(views.task_detail(task, self.router.url_for, request.session))

    def edit(self, request: HTTPRequest) -> HTTPResponse:
        task = self.tasks.find_or_fail(task_id(request))
        return html(views.task_form(self.router.url_for, request.session, task))

    def update(self, request: HTTPRequest) -> HTTPResponse:
        task = self.tasks.find_or_fail(task_id(request))
        result = self.validator.check(request.all())
        if not result.valid:
            return back_with_errors(request, result.errors, self.router.url_for("tasks.edit", id=task.id))

        self.tasks.update(task.id, result.data)
        request.session.flash("success", "Task updated successfully.")
        return redirect(self.router.url_for("tasks.show", id=task.id))

    def destroy(self, request: HTTPRequest) -> HTTPResponse:
        if not self.tasks.delete(task_id(request)):
            raise TaskNotFoundError(task_id(request))
        request.session.flash("success", "Task deleted successfully.")
        return redirect(self.router.url_for("tasks.index"))


class TaskApiController:
    def __init__(self, tasks: TaskRepository, router: Router, queue: Any):
        self.tasks = tasks
        self.router = router
        self.queue = queue
        self.validator = Validator(TASK_RULES)

    def index(self, request: HTTPRequest) -> HTTPResponse:
        status = request.get_query("status")
        tasks = self.tasks.all(status=status if status in STATUSES else None)
        return json_response({"data": [task.to_dict() for task in tasks], "count": len(tasks)})

    def store(self, request: HTTPRequest) -> HTTPResponse:
        data = self.validator.validate(api_payload(request))
        task = self.tasks.create(data)
        self.queue.enqueue({"event": "task.created", "task_id": task.id})
        return created({"data": task.to_dict()}, location=self.router.url_for("api.tasks.show", id=task.id))

    def show(self, request: HTTPRequest) -> HTTPResponse:
        return json_response({"data": self.tasks.find_or_fail(task_id(request)).to_dict()})

    def update(self, request: HTTPRequest) -> HTTPResponse:
        """PUT replaces every field; PATCH validates and changes only what was sent."""
        task = self.tasks.find_or_fail(task_id(request))
        payload = api_payload(request)
        if request.effective_method == "PATCH":
            data = Validator(partial_rules(payload)).validate(payload)
        else:
            data = self.validator.validate(payload)
        task = self.tasks.update(task.id, data)
        return json_response({"data": task.to_dict()})

    def destroy(self, request: HTTPRequest) -> HTTPResponse:
        if not self.tasks.delete(task_id(request)):
            raise TaskNotFoundError(task_id(request))
        return no_content()


class AuthController:
    def __init__(self, users: UserRepository, router: Router):
        self.users = users
        self.router = router
        self.register_validator = Validator(REGISTER_RULES)
        self.login_validator = Validator(LOGIN_RULES)

    def register_form(self, request: HTTPRequest) -> HTTPResponse:
        return html(views.register_form(self.router.url_for, request.session))

    def register(self, request: HTTPRequest) -> HTTPResponse:
        fallback = self.router.url_for("register")
        result = self.register_validator.check(request.all())
        if not result.valid:
            return back_with_errors(request, result.errors, fallback)
        if self.users.find_by_email(result.data["email"]) is not None:
            return back_with_errors(request, {"email": ["The email has already been taken."]}, fallback)

        user = self.users.create(result.data["name"], result.data["email"], result.data["password"])
        self._sign_in(request, user)
        request.session.flash("success", "Account created successfully.")
        return redirect(self.router.url_for("posts.index"))

    def login_form(self, request: HTTPRequest) -> HTTPResponse:
        return html(views.login_form(self.router.url_for, request.session))

    def login(self, request: HTTPRequest) -> HTTPResponse:
        fallback = self.router.url_for("login")
        result = self.login_validator.check(request.all())
        if not result.valid:
            return back_with_errors(request, result.errors, fallback)

        user = self.users.authenticate(result.data["email"], result.data["password"])
        if user is None:
            return back_with_errors(
                request, {"email": ["These credentials do not match our records."]}, fallback
            )

        self._sign_in(request, user)
        request.session.flash("success", f"Welcome back, {user.name}.")
        return redirect(self.router.url_for("posts.index"))

    def logout(self, request: HTTPRequest) -> HTTPResponse:
        request.session.invalidate()
        request.session.flash("success", "You have been logged out.")
        return redirect(self.router.url_for("login"))

    @staticmethod
    def _sign_in(request: HTTPRequest, user: User) -> None:
        session = request.session
        session.regenerate()
        session.regenerate_token()
        session.put("user_id", user.id)
        logger.info("User %d signed in", user.id)


class TokenApiController:
    def __init__(self, users: UserRepository):
        self.users = users
        self.validator = Validator(LOGIN_RULES)

    def store(self, request: HTTPRequest) -> HTTPResponse:
        data = self.validator.validate(api_payload(request))
        user = self.users.authenticate(data["email"], data["password"])
        if user is None:
            raise AuthenticationError("These credentials do not match our records.")
        token = self.users.issue_token(user)
        return created({"token": token, "token_type": "Bearer", "user": user.to_dict()})

    def destroy(self, request: HTTPRequest) -> HTTPResponse:
        self.users.revoke_token(request.user)
        return no_content()

    def user(self, request: HTTPRequest) -> HTTPResponse:
        return json_response({"data": request.user.to_dict()})


class PostController:
    def __init__(self, posts: PostRepository, router: Router, auth: AuthMiddleware):
        self.posts = posts
        self.router = router
        self.auth = auth
        self.validator = Validator(POST_RULES)

    def index(self, request: HTTPRequest) -> HTTPResponse:
        user = self.current_user(request)
        posts = [post for post in self.posts.all() if post.is_published or post.owned_by(user)]
        return html(views.post_list(posts, self.router.url_for, request.session, user))

    def create(self, request: HTTPRequest) -> HTTPResponse:
        return html(views.post_form(self.router.url_for, request.session))

    def store(self, request: HTTPRequest) -> HTTPResponse:
        result = self.validator.check({"publish": "0", **request.all()})
        if not result.valid:
            return back_with_errors(request, result.errors, self.router.url_for("posts.create"))

        post = self.posts.create(request.user.id, publication(result.data))
        request.session.flash("success", "Post created successfully.")
        return redirect(self.router.url_for("posts.show", id=post.id))

    def show(self, request: HTTPRequest) -> HTTPResponse:
        post = self.visible_post(request)
        user = self.current_user(request)
        return html(views.post_detail(post, self.router.url_for, request.session, post.owned_by(user)))

    def edit(self, request: HTTPRequest) -> HTTPResponse:
        post = self.owned_post(request)
        return html(views.post_form(self.router.url_for, request.session, post))

    def update(self, request: HTTPRequest) -> HTTPResponse:
        post = self.owned_post(request)
        result = self.validator.check({"publish": "0", **request.all()})
        if not result.valid:
            return back_with_errors(request, result.errors, self.router.url_for("posts.edit", id=post.id))

        self.posts.update(post.id, publication(result.data, post))
        request.session.flash("success", "Post updated successfully.")
        return redirect(self.router.url_for("posts.show", id=post.id))

    def destroy(self, request: HTTPRequest) -> HTTPResponse:
        post = self.owned_post(request)
        self.posts.delete(post.id)
        request.session.flash("success", "Post deleted successfully.")
        return redirect(self.router.url_for("posts.index"))

    # =========================================================================
    # ACCESS
    # =========================================================================

    def current_user(self, request: HTTPRequest) -> Optional[User]:
        """The user from AuthMiddleware, or resolved here on public routes."""
        return request.user or self.auth.resolve(request)

    def visible_post(self, request: HTTPRequest) -> Post:
        """Drafts look missing to everyone but their author."""
        post = self.posts.find_or_fail(post_id(request))
        if not post.is_published and not post.owned_by(self.current_user(request)):
            raise PostNotFoundError(post.id)
        return post

    def owned_post(self, request: HTTPRequest) -> Post:
        post = self.visible_post(request)
        if not post.owned_by(request.user):
            logger.warning("User %s may not change post %d", getattr(request.user, "id", None), post.id)
            raise ForbiddenError()
        return post


class PostApiController(PostController):
    """JSON rendition of PostController; access rules are shared."""

    def index(self, request: HTTPRequest) -> HTTPResponse:
        user = self.current_user(request)
        posts = [post for post in self.posts.all() if post.is_published or post.owned_by(user)]
        return json_response({"data": [post.to_dict() for post in posts], "count": len(posts)})

    def store(self, request: HTTPRequest) -> HTTPResponse:
        data = self.validator.validate(api_payload(request))
        post = self.posts.create(request.user.id, publication(data))
        return created({"data": post.to_dict()}, location=self.router.url_for("api.posts.show", id=post.id))

    def show(self, request: HTTPRequest) -> HTTPResponse:
        return json_response({"data": self.visible_post(request).to_dict()})

    def update(self, request: HTTPRequest) -> HTTPResponse:
        """Changes only the fields sent."""
        post = self.owned_post(request)
        payload = api_payload(request)
        rules = {name: rule for name, rule in POST_RULES.items() if name in payload}
        data = Validator(rules).validate(payload)
        post = self.posts.update(post.id, publication(data, post))
        return json_response({"data": post.to_dict()})

    def destroy(self, request: HTTPRequest) -> HTTPResponse:
        self.posts.delete(self.owned_post(request).id)
        return no_content()
