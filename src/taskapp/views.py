"""
HTML pages for the task, account and post screens.

Plain strings with every dynamic value passed through html.escape; the
framework deliberately ships no template engine.
"""

from html import escape
from typing import Any, Callable, Dict, List, Optional

from .models import PRIORITIES, STATUSES, Post, Task, User

UrlFor = Callable[..., str]

LAYOUT = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title} - Portfolion</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; max-width: 860px; margin: 40px auto; padding: 0 20px; color: #222; }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ text-align: left; padding: 8px; border-bottom: 1px solid #eee; }}
        .flash {{ padding: 10px 14px; border-radius: 6px; margin-bottom: 16px; }}
        .flash.success {{ background: #e6f6ea; }}
        .flash.error {{ background: #fdecea; }}
        .errors {{ color: #b00020; }}
        label {{ display: block; margin-top: 12px; }}
        input, select, textarea {{ width: 100%; padding: 6px; }}
    </style>
</head>
<body>
<h1>{title}</h1>
{flash}
{content}
</body>
</html>
"""


def layout(title: str, content: str, session: Any = None) -> str:
    flash = ""
    if session is not None:
        for kind in ("success", "error"):
            message = session.get_flash(kind)
            if message:
                flash += f'<div class="flash {kind}">{escape(str(message))}</div>\n'
    return LAYOUT.format(title=escape(title), flash=flash, content=content)


def _options(values, selected: Optional[str], blank: bool = False) -> str:
    options = ['<option value="">-</option>'] if blank else []
    for value in values:
        mark = " selected" if value == selected else ""
        label = value.replace("_", " ").title()
        options.append(f'<option value="{escape(value)}"{mark}>{escape(label)}</option>')
    return "\n".join(options)


def task_list(tasks: List[Task], url_for: UrlFor, session: Any = None, status: Optional[str] = None) -> str:
    filters = " | ".join(
        f'<a href="{escape(url_for("tasks.index", status=value))}">{escape(value.replace("_", " "))}</a>'
        for value in STATUSES
    )
    if tasks:
        rows = "\n".join(
            "<tr>"
            f'<td><a href="{escape(url_for("tasks.show", id=task.id))}">{escape(task.title)}</a></td>'
            f"<td>{escape(task.status_label)}</td>"
            f"<td>{escape(task.priority or '-')}</td>"
            f"<td>{escape(task.due_date or '-')}</td>"
            "</tr>"
            for task in tasks
        )
        table = f"<table>\n<tr><th>Title</th><th>Status</th><th>Priority</th><th>Due</th></tr>\n{rows}\n</table>"
    else:
        table = '<p class="empty">No tasks yet.</p>'

    content = (
        f'<p><a href="{escape(url_for("tasks.create"))}">New task</a> | '
        f'<a href="{escape(url_for("tasks.index"))}">all</a> | {filters}</p>\n'
        f'<p class="count">{len(tasks)} task(s){" with status " + escape(status) if status else ""}</p>\n'
        f"{table}"
    )
    return layout("Tasks", content, session)


def task_form(
    url_for: UrlFor,
    session: Any,
    task: Optional[Task] = None,
) -> str:
    """Create form when task is None, edit form otherwise."""
    errors: Dict[str, List[str]] = session.errors() if session is not None else {}

    def value(name: str) -> str:
        if session is not None:
            old = session.old(name)
            if old is not None:
                return str(old)
        current = getattr(task, name, None) if task is not None else None
        return "" if current is None else str(current)

    def error(name: str) -> str:
        messages = errors.get(name) or []
        return "".join(f'<div class="errors">{escape(message)}</div>' for message in messages)

    if task is None:
        action = url_for("tasks.store")
        method_field = ""
        title = "New task"
    else:
        action = url_for("tasks.update", id=task.id)
        method_field = '<input type="hidden" name="_method" value="PUT">'
        title = f"Edit: {task.title}"

    status = value("status") or "pending"
    content = f"""<form method="POST" action="{escape(action)}">
<input type="hidden" name="_token" value="{escape(session.token())}">
{method_field}
<label>Title <input name="title" value="{escape(value('title'))}" maxlength="255"></label>
{error('title')}
<label>Description <textarea name="description">{escape(value('description'))}</textarea></label>
{error('description')}
<label>Status <select name="status">{_options(STATUSES, status)}</select></label>
{error('status')}
<label>Priority <select name="priority">{_options(PRIORITIES, value('priority'), blank=True)}</select></label>
{error('priority')}
<label>Due date <input type="date" name="due_date" value="{escape(value('due_date'))}"></label>
{error('due_date')}
<p><button type="submit">Save</button> <a href="{escape(url_for('tasks.index'))}">Cancel</a></p>
</form>"""
    return layout(title, content, session)


def task_detail(task: Task, url_for: UrlFor, session: Any) -> str:
    content = f"""<dl>
<dt>Status</dt><dd>{escape(task.status_label)}</dd>
<dt>Priority</dt><dd>{escape(task.priority or '-')}</dd>
<dt>Due date</dt><dd>{escape(task.due_date or '-')}</dd>
<dt>Description</dt><dd>{escape(task.description or '')}</dd>
<dt>Created</dt><dd>{escape(task.created_at or '')}</dd>
</dl>
<p><a href="{escape(url_for('tasks.edit', id=task.id))}">Edit</a> | <a href="{escape(url_for('tasks.index'))}">Back</a></p>
<form method="POST" action="{escape(url_for('tasks.destroy', id=task.id))}">
<input type="hidden" name="_token" value="{escape(session.token())}">
<input type="hidden" name="_method" value="DELETE">
<button type="submit">Delete</button>
</form>"""
    return layout(task.title, content, session)


def _field_errors(session: Any):
    errors: Dict[str, List[str]] = session.errors() if session is not None else {}

    def error(name: str) -> str:
        return "".join(f'<div class="errors">{escape(message)}</div>' for message in errors.get(name) or [])
    return error


# =============================================================================
# ACCOUNTS
# =============================================================================

def login_form(url_for: UrlFor, session: Any) -> str:
    error = _field_errors(session)
    content = f"""<form method="POST" action="{escape(url_for('login.store'))}">
<input type="hidden" name="_token" value="{escape(session.token())}">
<label>Email <input type="email" name="email" value="{escape(str(session.old('email') or ''))}"></label>
{error('email')}
<label>Password <input type="password" name="password"></label>
{error('password')}
<p><button type="submit">Log in</button> <a href="{escape(url_for('register'))}">Register</a></p>
</form>"""
    return layout("Log in", content, session)


def register_form(url_for: UrlFor, session: Any) -> str:
    error = _field_errors(session)
    content = f"""<form method="POST" action="{escape(url_for('register.store'))}">
<input type="hidden" name="_token" value="{escape(session.token())}">
<label>Name <input name="name" value="{escape(str(session.old('name') or ''))}" maxlength="255"></label>
{error('name')}
<label>Email <input type="email" name="email" value="{escape(str(session.old('email') or ''))}"></label>
{error('email')}
<label>Password <input type="password" name="password"></label>
{error('password')}
<label>Confirm password <input type="password" name="password_confirmation"></label>
<p><button type="submit">Register</button> <a href="{escape(url_for('login'))}">Log in</a></p>
</form>"""
    return layout("Register", content, session)


# =============================================================================
# POSTS
# =============================================================================

def _account_bar(url_for: UrlFor, session: Any, user: Optional[User]) -> str:
    if user is None:
        return f'<p><a href="{escape(url_for("login"))}">Log in</a> | <a href="{escape(url_for("register"))}">Register</a></p>'
    return f"""<form method="POST" action="{escape(url_for('logout'))}">
Signed in as {escape(user.name)}
<input type="hidden" name="_token" value="{escape(session.token())}">
<button type="submit">Log out</button> | <a href="{escape(url_for('posts.create'))}">New post</a>
</form>"""


def post_list(posts: List[Post], url_for: UrlFor, session: Any, user: Optional[User] = None) -> str:
    if posts:
        items = "\n".join(
            f'<li><a href="{escape(url_for("posts.show", id=post.id))}">{escape(post.title)}</a>'
            f'{"" if post.is_published else " <em>(draft)</em>"}</li>'
            for post in posts
        )
        listing = f"<ul>\n{items}\n</ul>"
    else:
        listing = '<p class="empty">No posts yet.</p>'
    return layout("Posts", _account_bar(url_for, session, user) + "\n" + listing, session)


def post_form(url_for: UrlFor, session: Any, post: Optional[Post] = None) -> str:
    """Create form when post is None, edit form otherwise."""
    error = _field_errors(session)

    def value(name: str) -> str:
        old = session.old(name)
        if old is not None:
            return str(old)
        current = getattr(post, name, None) if post is not None else None
        return "" if current is None else str(current)

    if post is None:
        action, method_field, title = url_for("posts.store"), "", "New post"
        published = False
    else:
        action = url_for("posts.update", id=post.id)
        method_field = '<input type="hidden" name="_method" value="PUT">'
        title = f"Edit: {post.title}"
        published = post.is_published
    checked = " checked" if published else ""

    content = f"""<form method="POST" action="{escape(action)}">
<input type="hidden" name="_token" value="{escape(session.token())}">
{method_field}
<label>Title <input name="title" value="{escape(value('title'))}" maxlength="255"></label>
{error('title')}
<label>Content <textarea name="content">{escape(value('content'))}</textarea></label>
{error('content')}
<label><input type="checkbox" name="publish" value="1"{checked}> Published</label>
<p><button type="submit">Save</button> <a href="{escape(url_for('posts.index'))}">Cancel</a></p>
</form>"""
    return layout(title, content, session)


def post_detail(post: Post, url_for: UrlFor, session: Any, can_edit: bool = False) -> str:
    actions = ""
    if can_edit:
        actions = f"""<p><a href="{escape(url_for('posts.edit', id=post.id))}">Edit</a></p>
<form method="POST" action="{escape(url_for('posts.destroy', id=post.id))}">
<input type="hidden" name="_token" value="{escape(session.token())}">
<input type="hidden" name="_method" value="DELETE">
<button type="submit">Delete</button>
</form>"""
    content = f"""<p class="meta">{escape(post.published_at or 'Draft')} | {escape(post.slug)}</p>
<div class="content">{escape(post.content)}</div>
{actions}
<p><a href="{escape(url_for('posts.index'))}">Back</a></p>"""
    return layout(post.title, content, session)
