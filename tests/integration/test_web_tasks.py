"""
Integration tests for the HTML task screens.

These go through the whole stack: error handler, access log, CORS,
sessions, CSRF, the router and the controllers.
"""

from portfolion.testing import TestClient


class TestTaskForms:
    """Create / list / show through HTML forms."""

    def test_home_redirects_to_list(self, client):
        response = client.get("/")

        assert response.status == 302
        assert response.headers["Location"] == "/tasks"

    def test_empty_list(self, client):
        response = client.get("/tasks")

        assert response.status == 200
        assert "No tasks yet." in response.text

    def test_create_form_carries_csrf_token(self, client):
        response = client.get("/tasks/create")

        assert response.status == 200
        assert 'name="_token"' in response.text
        assert "portfolion_session" in client.cookies

    def test_store_then_list_shows_exactly_one_task(self, client, app, csrf_token):
        token = csrf_token()

        response = client.post("/tasks", data={
            "_token": token,
            "title": "Buy milk",
            "status": "pending",
            "priority": "high",
            "due_date": "",
        })

        assert response.status == 302
        assert response.headers["Location"] == "/tasks"

        page = client.follow(response)
        assert page.status == 200
        assert "Task created successfully." in page.text
        assert "Buy milk" in page.text
        assert "1 task(s)" in page.text
        assert app.tasks.count() == 1

        # flash is gone on the next request
        assert "Task created successfully." not in client.get("/tasks").text

    def test_store_queues_created_event(self, client, app, csrf_token):
        client.post("/tasks", data={"_token": csrf_token(), "title": "Queued", "status": "pending"})

        assert [job.name for job in app.queue.processed] == ["task.created"]

    def test_validation_failure_redirects_back_with_errors_and_old_input(self, client, app, csrf_token):
        token = csrf_token()

        response = client.post(
            "/tasks",
            data={"_token": token, "title": "Keep me", "status": "someday"},
            headers={"Referer": "/tasks/create"},
        )

        assert response.status == 302
        assert response.headers["Location"] == "/tasks/create"
        assert app.tasks.count() == 0

        form = client.follow(response)
        assert "The selected status is invalid." in form.text
        assert "Please fix the errors below." in form.text
        assert 'value="Keep me"' in form.text

    def test_status_filter(self, client, app):
        app.tasks.create({"title": "Open", "status": "pending"})
        app.tasks.create({"title": "Done", "status": "completed"})

        page = client.get("/tasks?status=completed")

        assert "Done" in page.text
        assert "Open" not in page.text
        assert "1 task(s) with status completed" in page.text

    def test_show_and_missing_task(self, client, app):
        task = app.tasks.create({"title": "Read <book>", "status": "pending"})

        page = client.get(f"/tasks/{task.id}")
        assert page.status == 200
        assert "Read &lt;book&gt;" in page.text

        assert client.get("/tasks/999").status == 404

    def test_non_numeric_id_is_404(self, client):
        assert client.get("/tasks/abc").status == 404


class TestUpdateAndDelete:
    """Method override through hidden form fields."""

    def test_update_via_method_override(self, client, app, csrf_token):
        task = app.tasks.create({"title": "Old", "status": "pending"})
        token = csrf_token(f"/tasks/{task.id}/edit")

        response = client.post(f"/tasks/{task.id}", data={
            "_token": token,
            "_method": "PUT",
            "title": "New",
            "status": "completed",
        })

        assert response.status == 302
        assert response.headers["Location"] == f"/tasks/{task.id}"
        assert app.tasks.find(task.id).title == "New"
        assert "Task updated successfully." in client.follow(response).text

    def test_update_validation_failure(self, client, app, csrf_token):
        task = app.tasks.create({"title": "Old", "status": "pending"})
        token = csrf_token(f"/tasks/{task.id}/edit")

        response = client.post(f"/tasks/{task.id}", data={"_token": token, "_method": "PUT", "title": "", "status": "pending"})

        assert response.headers["Location"] == f"/tasks/{task.id}/edit"
        assert "The title field is required." in client.follow(response).text
        assert app.tasks.find(task.id).title == "Old"

    def test_delete_via_method_override(self, client, app, csrf_token):
        task = app.tasks.create({"title": "Bye", "status": "pending"})
        token = csrf_token(f"/tasks/{task.id}")

        response = client.post(f"/tasks/{task.id}", data={"_token": token, "_method": "DELETE"})

        assert response.status == 302
        assert app.tasks.find(task.id) is None
        assert "Task deleted successfully." in client.follow(response).text

    def test_delete_missing_task(self, client, csrf_token):
        token = csrf_token()
        assert client.post("/tasks/42", data={"_token": token, "_method": "DELETE"}).status == 404


class TestCsrfProtection:
    """Forms without a valid token never reach the controller."""

    def test_missing_token_redirects_back(self, client, app):
        client.get("/tasks/create")
        response = client.post(
            "/tasks",
            data={"title": "Sneaky", "status": "pending"},
            headers={"Referer": "/tasks/create"},
        )

        assert response.status == 302
        assert response.headers["Location"] == "/tasks/create"
        assert app.tasks.count() == 0
        assert "CSRF token mismatch." in client.follow(response).text

    def test_missing_token_ajax_is_403(self, client, app):
        response = client.post(
            "/tasks",
            data={"title": "Sneaky", "status": "pending"},
            headers={"X-Requested-With": "XMLHttpRequest"},
        )

        assert response.status == 403
        assert response.json()["error"] == "CSRF token mismatch."
        assert app.tasks.count() == 0

    def test_token_from_another_session_rejected(self, app, client, csrf_token):
        stolen = csrf_token(using=TestClient(app))
        client.get("/tasks/create")

        response = client.post("/tasks", data={"_token": stolen, "title": "x", "status": "pending"})
        assert response.status == 302
        assert app.tasks.count() == 0

    def test_xsrf_header_accepted(self, client, app):
        client.get("/tasks/create")

        response = client.post(
            "/tasks",
            data={"title": "Via header", "status": "pending"},
            headers={"X-XSRF-TOKEN": client.cookies["XSRF-TOKEN"]},
        )

        assert response.status == 302
        assert app.tasks.count() == 1


class TestRoutingErrors:
    def test_unknown_path_html(self, client):
        response = client.get("/nowhere")

        assert response.status == 404
        assert "<h1>404 Not Found</h1>" in response.text

    def test_wrong_method_has_allow_header(self, client):
        response = client.request("PATCH", "/tasks/create")

        assert response.status == 405
        assert response.headers["Allow"] == "GET, HEAD"

    def test_head_request_routes_to_get(self, client):
        assert client.head("/tasks").status == 200


class TestOutOfRangeIds:
    HUGE = "99999999999999999999999"

    def test_show_and_edit(self, client):
        assert client.get(f"/tasks/{self.HUGE}").status == 404
        assert client.get(f"/tasks/{self.HUGE}/edit").status == 404

    def test_update_and_delete(self, client, csrf_token):
        token = csrf_token()

        update = client.post(f"/tasks/{self.HUGE}", data={"_token": token, "_method": "PUT", "title": "x", "status": "pending"})
        delete = client.post(f"/tasks/{self.HUGE}", data={"_token": token, "_method": "DELETE"})

        assert update.status == 404
        assert delete.status == 404
