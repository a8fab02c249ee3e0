"""
Tests for SSR pages (auth flow, dashboard, forms, card actions)
"""
import re

from conftest import TEST_EMAIL, TEST_PASSWORD

NETFLIX_FORM = {
    "service_name": "Netflix",
    "category": "Entertainment",
    "price": "80",
    "billing_cycle": "Monthly",
    "payment_method": "Card",
    "notes": "",
    "is_active": "true",
}


def _add(client, **overrides):
    return client.post("/add-subscription", data={**NETFLIX_FORM, **overrides})


def _first_card_id(html):
    return re.search(r'/subscriptions/([^/]+)/toggle', html).group(1)


# === Navigation ===

def test_root_redirects_to_login(client):
    response = client.get("/", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/login"


def test_unknown_path_redirects_to_login(client):
    response = client.get("/no/such/page", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/login"


def test_protected_pages_redirect_anonymous(client):
    for path in ("/dashboard", "/add-subscription", "/edit-subscription/x"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/login"


def test_health(client):
    assert client.get("/health").text == "ok"


# === Login ===

def test_login_success_opens_dashboard(client, verified_user, registry):
    response = client.post("/login", data={"email": TEST_EMAIL, "password": TEST_PASSWORD})

    assert response.url.path == "/dashboard"
    assert "Login successful!" in response.text
    assert "0.00 MAD" in response.text
    assert registry.get(verified_user.uid) is not None


def test_login_form_validation(client):
    assert "Please enter valid data." in client.post("/login", data={"email": "", "password": ""}).text
    assert "Please enter a valid email address." in client.post(
        "/login", data={"email": "nope", "password": "secret123"}).text
    assert "Password must be at least 6 characters." in client.post(
        "/login", data={"email": TEST_EMAIL, "password": "123"}).text


def test_login_wrong_password(client, verified_user):
    response = client.post("/login", data={"email": TEST_EMAIL, "password": "wrong-password"})
    assert "Invalid email or password." in response.text


def test_unverified_login_offers_resend(client, auth_gateway, mailer):
    auth_gateway.sign_up("dana@example.com", "secret123")

    response = client.post("/login", data={"email": "dana@example.com", "password": "secret123"})

    assert "Please verify your email." in response.text
    assert "/resend-verification" in response.text
    assert client.get("/dashboard", follow_redirects=False).status_code == 302

    response = client.post("/resend-verification")
    assert "Verification email sent! Check your inbox." in response.text
    assert len(mailer.sent) == 2


def test_logged_in_user_skips_login_page(authenticated_client):
    response = authenticated_client.get("/login", follow_redirects=False)
    assert response.headers["location"] == "/dashboard"


def test_logout_closes_session(authenticated_client, verified_user, registry):
    response = authenticated_client.get("/logout")

    assert response.url.path == "/login"
    assert "Logged out successfully!" in response.text
    assert registry.get(verified_user.uid) is None
    assert authenticated_client.get("/dashboard", follow_redirects=False).status_code == 302


# === Signup / verification / reset ===

def test_signup_flow(client, mailer):
    response = client.post("/signup", data={
        "email": "new@example.com", "password": "secret123", "confirm_password": "other123",
    })
    assert "Passwords do not match." in response.text

    response = client.post("/signup", data={
        "email": "new@example.com", "password": "secret123", "confirm_password": "secret123",
    })
    assert response.url.path == "/login"
    assert "Signup successful! Verification email sent." in response.text

    response = client.get("/verify-email", params={"token": mailer.last_token()})
    assert "Email verified! You can now log in." in response.text

    response = client.post("/login", data={"email": "new@example.com", "password": "secret123"})
    assert response.url.path == "/dashboard"


def test_signup_duplicate_email(client, verified_user):
    response = client.post("/signup", data={
        "email": TEST_EMAIL, "password": "secret123", "confirm_password": "secret123",
    })
    assert "This email is already in use." in response.text


def test_forget_password_same_answer_for_unknown_email(client, verified_user, mailer):
    sent_before = len(mailer.sent)

    unknown = client.post("/forget-password", data={"email": "ghost@example.com"})
    known = client.post("/forget-password", data={"email": TEST_EMAIL})

    expected = "If an account exists with this email, a password reset link has been sent."
    assert expected in unknown.text
    assert expected in known.text
    assert len(mailer.sent) == sent_before + 1


def test_forget_password_requires_email(client):
    response = client.post("/forget-password", data={"email": ""})
    assert "Please enter your email address." in response.text


def test_reset_password_flow(client, verified_user, mailer):
    client.post("/forget-password", data={"email": TEST_EMAIL})
    token = mailer.last_token()

    assert 'name="token"' in client.get("/reset-password", params={"token": token}).text

    response = client.post("/reset-password", data={
        "token": token, "password": "brandnew1", "confirm_password": "brandnew1",
    })
    assert "Password has been reset. You can now log in." in response.text

    response = client.post("/login", data={"email": TEST_EMAIL, "password": "brandnew1"})
    assert response.url.path == "/dashboard"


def test_federated_login(client):
    response = client.post("/login/federated", data={"id_token": "google-token"})

    assert response.url.path == "/dashboard"
    assert "carol@gmail.com" in response.text


# === Dashboard / forms ===

def test_add_subscription_shows_on_dashboard(authenticated_client):
    response = _add(authenticated_client)

    assert response.url.path == "/dashboard"
    assert "Subscription added successfully!" in response.text
    assert "Netflix" in response.text
    assert "80.00 MAD" in response.text
    assert "960.00 MAD" in response.text
    assert "No notes provided" in response.text


def test_add_subscription_validation_keeps_values(authenticated_client):
    response = _add(authenticated_client, service_name="", notes="keep me")

    assert response.url.path == "/add-subscription"
    assert "Service name is required." in response.text
    assert "keep me" in response.text


def test_toggle_and_filter(authenticated_client):
    page = _add(authenticated_client).text
    sub_id = _first_card_id(page)

    response = authenticated_client.post(f"/subscriptions/{sub_id}/toggle", data={})
    assert "Subscription deactivated successfully." in response.text
    assert "Monthly total" in response.text
    assert "0.00 MAD" in response.text

    inactive = authenticated_client.get("/dashboard", params={"status": "inactive"}).text
    assert "Netflix" in inactive
    active = authenticated_client.get("/dashboard", params={"status": "active"}).text
    assert "No subscriptions match the selected filters." in active

    response = authenticated_client.post(f"/subscriptions/{sub_id}/toggle", data={"is_active": "true"})
    assert "Subscription activated successfully." in response.text


def test_invalid_filter_shows_error(authenticated_client):
    response = authenticated_client.get("/dashboard", params={"paymentMethod": "Crypto"})
    assert "Invalid payment method filter." in response.text


def test_edit_subscription(authenticated_client):
    sub_id = _first_card_id(_add(authenticated_client).text)

    form = authenticated_client.get(f"/edit-subscription/{sub_id}").text
    assert 'value="Netflix"' in form

    response = authenticated_client.post(f"/edit-subscription/{sub_id}", data={
        **NETFLIX_FORM, "service_name": "Netflix 4K", "price": "120",
    })
    assert "Subscription updated successfully!" in response.text
    assert "Netflix 4K" in response.text
    assert "120.00 MAD" in response.text


def test_edit_missing_subscription(authenticated_client):
    response = authenticated_client.get("/edit-subscription/missing")

    assert response.url.path == "/dashboard"
    assert "Subscription not found." in response.text


def test_delete_subscription(authenticated_client):
    sub_id = _first_card_id(_add(authenticated_client).text)

    response = authenticated_client.post(f"/subscriptions/{sub_id}/delete")

    assert "Subscription deleted successfully." in response.text
    assert f"/subscriptions/{sub_id}/toggle" not in response.text
