# app.py
import logging
from functools import wraps
from pathlib import Path

from flask import Flask, request, jsonify, Response
from flask_login import LoginManager, UserMixin, login_required, current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

import services
from config import Config, BrandingConfig, MailConfig, configure_logging
from email_service import EmailError, send_invoice_email
from errors import ServiceError
from invoice_document import get_invoice_for_render
from models import Base, User, make_engine, make_session_factory
from pdf_service import invoice_pdf_filename, render_invoice_pdf

logger = logging.getLogger(__name__)

TOKEN_SALT = "printshop-auth-token"


# -----------------------------
# Flask-Login user wrapper
# -----------------------------
class AppUser(UserMixin):
    def __init__(self, user_id: int, username: str, role: str):
        self.id = str(user_id)
        self.username = username
        self.role = role

    @property
    def user_id(self) -> int:
        return int(self.id)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# -----------------------------
# Helpers
# -----------------------------
def ok(data=None, message: str | None = None, status: int = 200):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def fail(error: str, status: int):
    return jsonify({"success": False, "error": error}), status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return fail("Authentication required", 401)
        if not current_user.is_admin:
            return fail("Admin access required", 403)
        return view(*args, **kwargs)
    return wrapper


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[7:].strip() or None


# -----------------------------
# App factory
# -----------------------------
def create_app(
    overrides: dict | None = None,
    branding: BrandingConfig | None = None,
    mail: MailConfig | None = None,
):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    configure_logging(app.config.get("LOG_LEVEL"))

    db_url = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_url.startswith("sqlite:///") and ":memory:" not in db_url:
        Path(db_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    engine = make_engine(db_url, echo=app.config["SQLALCHEMY_ECHO"])
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)

    branding = branding or BrandingConfig.from_env()
    mail = mail or MailConfig.from_env()
    app.extensions["printshop"] = {"branding": branding, "mail": mail, "session_factory": SessionLocal}

    serializer = URLSafeTimedSerializer(app.config["SECRET_KEY"], salt=TOKEN_SALT)
    # One LoginManager per app so each app verifies tokens with its own key
    login_manager = LoginManager(app)

    def db_session():
        return SessionLocal()

    def issue_token(u: User) -> str:
        return serializer.dumps({"user_id": u.id, "role": u.role})

    @login_manager.request_loader
    def load_user_from_request(req):
        token = _bearer_token()
        if not token:
            return None
        try:
            claims = serializer.loads(token, max_age=app.config["TOKEN_MAX_AGE"])
        except (BadSignature, SignatureExpired):
            return None
        with db_session() as s:
            u = s.get(User, int(claims.get("user_id", 0)))
            if not u:
                return None
            return AppUser(u.id, u.username, u.role)

    @login_manager.unauthorized_handler
    def unauthorized():
        return fail("Authentication required", 401)

    @app.errorhandler(ServiceError)
    def handle_service_error(exc: ServiceError):
        return fail(exc.message, exc.status_code)

    @app.errorhandler(EmailError)
    def handle_email_error(exc: EmailError):
        logger.warning("Email failed: %s", exc)
        return fail(str(exc), 502)

    # -----------------------------
    # Health
    # -----------------------------
    @app.route("/api/health")
    def health():
        return ok({"status": "ok"})

    # -----------------------------
    # Auth routes
    # -----------------------------
    @app.route("/api/auth/login", methods=["POST"])
    def login():
        body = _json_body()
        with db_session() as s:
            u = services.authenticate(s, body.get("username"), body.get("password"))
            return ok({"user": u.to_dict(), "token": issue_token(u)})

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        body = _json_body()
        with db_session() as s:
            # Bootstrap: first user can register without a token, after that admin only
            if s.query(User.id).first() is not None:
                if not current_user.is_authenticated:
                    return fail("Authentication required", 401)
                if not current_user.is_admin:
                    return fail("Admin access required", 403)
            u = services.register_user(
                s, body.get("username"), body.get("password"),
                email=body.get("email"), role=body.get("role"),
            )
            return ok({"user": u.to_dict(), "token": issue_token(u)}, status=201)

    @app.route("/api/auth/me")
    @login_required
    def me():
        with db_session() as s:
            u = s.get(User, current_user.user_id)
            if not u:
                return fail("User not found", 404)
            return ok(u.to_dict())

    # -----------------------------
    # Users (admin)
    # -----------------------------
    @app.route("/api/users")
    @admin_required
    def users_list():
        with db_session() as s:
            return ok([u.to_dict() for u in services.list_users(s)])

    @app.route("/api/users", methods=["POST"])
    @admin_required
    def users_create():
        body = _json_body()
        with db_session() as s:
            u = services.register_user(s, body.get("username"), body.get("password"), email=body.get("email"), role=body.get("role"))
            return ok(u.to_dict(), "User created", 201)

    @app.route("/api/users/<int:user_id>", methods=["PUT"])
    @admin_required
    def users_update(user_id: int):
        with db_session() as s:
            u = services.update_user(s, user_id, _json_body(), acting_user_id=current_user.user_id)
            return ok(u.to_dict(), "User updated")

    @app.route("/api/users/<int:user_id>/reset-password", methods=["POST"])
    @admin_required
    def users_reset_password(user_id: int):
        with db_session() as s:
            services.reset_password(s, user_id, _json_body().get("password"))
        return ok(message="Password reset successfully")

    @app.route("/api/users/<int:user_id>", methods=["DELETE"])
    @admin_required
    def users_delete(user_id: int):
        with db_session() as s:
            services.delete_user(s, user_id, acting_user_id=current_user.user_id)
        return ok(message="User deleted")

    # -----------------------------
    # Customers
    # -----------------------------
    @app.route("/api/customers")
    @login_required
    def customers_list():
        with db_session() as s:
            return ok([c.to_dict() for c in services.list_customers(s)])

    @app.route("/api/customers", methods=["POST"])
    @login_required
    def customers_create():
        with db_session() as s:
            c = services.create_customer(s, _json_body())
            return ok(c.to_dict(), "Customer created", 201)

    @app.route("/api/customers/<int:customer_id>")
    @login_required
    def customers_get(customer_id: int):
        with db_session() as s:
            return ok(services.get_customer(s, customer_id).to_dict())

    @app.route("/api/customers/<int:customer_id>", methods=["PUT"])
    @login_required
    def customers_update(customer_id: int):
        with db_session() as s:
            c = services.update_customer(s, customer_id, _json_body())
            return ok(c.to_dict(), "Customer updated")

    @app.route("/api/customers/<int:customer_id>", methods=["DELETE"])
    @login_required
    def customers_delete(customer_id: int):
        with db_session() as s:
            services.delete_customer(s, customer_id)
        return ok(message="Customer deleted")

    # -----------------------------
    # Products
    # -----------------------------
    @app.route("/api/products")
    @login_required
    def products_list():
        active_only = (request.args.get("active") or "").strip().lower() in ("1", "true", "yes")
        with db_session() as s:
            return ok([p.to_dict() for p in services.list_products(s, active_only=active_only)])

    @app.route("/api/products", methods=["POST"])
    @login_required
    def products_create():
        with db_session() as s:
            p = services.create_product(s, _json_body())
            return ok(p.to_dict(), "Product created", 201)

    @app.route("/api/products/suggest-sku")
    @login_required
    def products_suggest_sku():
        name = (request.args.get("name") or "").strip()
        if not name:
            return fail("name is required", 400)
        exclude = request.args.get("excludeId", type=int)
        with db_session() as s:
            return ok({"sku": services.suggest_product_sku(s, name, exclude_id=exclude)})

    @app.route("/api/products/<int:product_id>")
    @login_required
    def products_get(product_id: int):
        with db_session() as s:
            return ok(services.get_product(s, product_id).to_dict())

    @app.route("/api/products/<int:product_id>", methods=["PUT"])
    @login_required
    def products_update(product_id: int):
        with db_session() as s:
            p = services.update_product(s, product_id, _json_body())
            return ok(p.to_dict(), "Product updated")

    @app.route("/api/products/<int:product_id>", methods=["DELETE"])
    @login_required
    def products_delete(product_id: int):
        with db_session() as s:
            services.delete_product(s, product_id)
        return ok(message="Product deleted")

    # -----------------------------
    # Sales invoices
    # -----------------------------
    @app.route("/api/sales-invoices")
    @login_required
    def invoices_list():
        with db_session() as s:
            return ok([inv.to_dict() for inv in services.list_invoices(s)])

    @app.route("/api/sales-invoices", methods=["POST"])
    @login_required
    def invoices_create():
        with db_session() as s:
            inv = services.create_invoice(s, _json_body())
            return ok(inv.to_dict(), "Invoice created", 201)

    @app.route("/api/sales-invoices/<int:invoice_id>")
    @login_required
    def invoices_get(invoice_id: int):
        with db_session() as s:
            return ok(services.get_invoice(s, invoice_id).to_dict())

    @app.route("/api/sales-invoices/<int:invoice_id>", methods=["PUT"])
    @login_required
    def invoices_update(invoice_id: int):
        with db_session() as s:
            inv = services.update_invoice(s, invoice_id, _json_body())
            return ok(inv.to_dict(), "Invoice updated")

    @app.route("/api/sales-invoices/<int:invoice_id>", methods=["DELETE"])
    @login_required
    def invoices_delete(invoice_id: int):
        with db_session() as s:
            services.delete_invoice(s, invoice_id)
        return ok(message="Invoice deleted")

    @app.route("/api/sales-invoices/<int:invoice_id>/line-items", methods=["POST"])
    @login_required
    def line_items_add(invoice_id: int):
        with db_session() as s:
            li = services.add_line_item(s, invoice_id, _json_body())
            return ok(li.to_dict(), "Line item added", 201)

    @app.route("/api/sales-invoices/<int:invoice_id>/line-items/<int:item_id>", methods=["PUT"])
    @login_required
    def line_items_update(invoice_id: int, item_id: int):
        with db_session() as s:
            li = services.update_line_item(s, invoice_id, item_id, _json_body())
            return ok(li.to_dict(), "Line item updated")

    @app.route("/api/sales-invoices/<int:invoice_id>/line-items/<int:item_id>", methods=["DELETE"])
    @login_required
    def line_items_delete(invoice_id: int, item_id: int):
        with db_session() as s:
            services.delete_line_item(s, invoice_id, item_id)
        return ok(message="Line item deleted")

    @app.route("/api/sales-invoices/<int:invoice_id>/pdf")
    @login_required
    def invoices_pdf(invoice_id: int):
        with db_session() as s:
            doc = get_invoice_for_render(s, invoice_id)
        pdf_bytes = render_invoice_pdf(doc, branding)
        return Response(
            pdf_bytes,
            mimetype="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{invoice_pdf_filename(doc)}"'},
        )

    @app.route("/api/sales-invoices/<int:invoice_id>/send", methods=["POST"])
    @login_required
    def invoices_send(invoice_id: int):
        with db_session() as s:
            doc = get_invoice_for_render(s, invoice_id)
            if doc.customer is None:
                return fail("Invoice has no customer", 400)
            pdf_bytes = render_invoice_pdf(doc, branding)
            send_invoice_email(mail, branding, doc.customer, doc.invoice_number, pdf_bytes)
            services.mark_invoice_sent(s, invoice_id)
        return ok(message=f"Invoice {doc.invoice_number} sent to {doc.customer.email}")

    @app.route("/api/sales-invoices/<int:invoice_id>/send-to-queue", methods=["POST"])
    @login_required
    def invoices_send_to_queue(invoice_id: int):
        ids = _json_body().get("lineItemIds")
        with db_session() as s:
            created = services.send_to_queue(s, invoice_id, ids)
            return ok([qi.to_dict() for qi in created], "Line items sent to print queue")

    # -----------------------------
    # Print queue
    # -----------------------------
    @app.route("/api/queue")
    @login_required
    def queue_list():
        with db_session() as s:
            return ok([qi.to_dict() for qi in services.list_queue(s)])

    @app.route("/api/queue", methods=["POST"])
    @login_required
    def queue_create():
        with db_session() as s:
            qi = services.create_queue_item(s, _json_body())
            return ok(qi.to_dict(), "Queue item created", 201)

    @app.route("/api/queue/batch", methods=["POST"])
    @login_required
    def queue_create_batch():
        items = _json_body().get("items") or []
        with db_session() as s:
            created = services.create_queue_items(s, items)
            return ok([qi.to_dict() for qi in created], "Queue items created", 201)

    @app.route("/api/queue/reorder", methods=["PATCH"])
    @login_required
    def queue_reorder():
        body = _json_body()
        try:
            item_id = int(body.get("itemId"))
            new_position = int(body.get("newPosition"))
        except (TypeError, ValueError):
            return fail("itemId and newPosition are required", 400)
        with db_session() as s:
            items = services.reorder_queue(s, item_id, new_position)
            return ok([qi.to_dict() for qi in items], "Queue reordered")

    @app.route("/api/queue/<int:item_id>")
    @login_required
    def queue_get(item_id: int):
        with db_session() as s:
            return ok(services.get_queue_item(s, item_id).to_dict())

    @app.route("/api/queue/<int:item_id>", methods=["PUT"])
    @login_required
    def queue_update(item_id: int):
        with db_session() as s:
            qi = services.update_queue_item(s, item_id, _json_body())
            return ok(qi.to_dict(), "Queue item updated")

    @app.route("/api/queue/<int:item_id>/status", methods=["PATCH"])
    @login_required
    def queue_status(item_id: int):
        with db_session() as s:
            qi = services.set_queue_status(s, item_id, _json_body().get("status"))
            return ok(qi.to_dict(), "Status updated")

    @app.route("/api/queue/<int:item_id>", methods=["DELETE"])
    @login_required
    def queue_delete(item_id: int):
        with db_session() as s:
            services.delete_queue_item(s, item_id)
        return ok(message="Queue item deleted")

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
