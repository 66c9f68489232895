"""
Application wiring: CLI commands and the CORS response hook.
"""

from orderdesk.models import Product
from orderdesk.services.session_service import validate_token

from tests.conftest import TEST_TOKEN, TEST_USER_ID, sale_in_status


class TestCli:
    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        first = runner.invoke(args=["products", "seed-demo"])
        assert "Created 5 demo products" in first.output

        second = runner.invoke(args=["products", "seed-demo"])
        assert "Created 0 demo products" in second.output
        assert db_session.query(Product).count() == 5

    def test_low_stock_table(self, app, db_session, make_product):
        make_product(stock=2, sku="LOW-1")
        make_product(stock=50, sku="HIGH-1")
        result = app.test_cli_runner().invoke(args=["products", "stock", "--low", "5"])
        assert "LOW-1" in result.output
        assert "HIGH-1" not in result.output

    def test_show_sale(self, app, db_session, product, actor):
        sale = sale_in_status("paid", product.id, actor)
        result = app.test_cli_runner().invoke(args=["sales", "show", str(sale.id)])
        assert sale.sale_number in result.output
        assert "paid" in result.output

    def test_show_missing_sale(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["sales", "show", "999999"])
        assert result.exit_code != 0
        assert "Sale not found" in result.output


class TestCors:
    def test_known_origin(self, client, db_session):
        response = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

    def test_unknown_origin(self, client, db_session):
        response = client.get("/api/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in response.headers


class TestTokens:
    def test_known_token(self, app):
        context = validate_token(TEST_TOKEN)
        assert context.user_id == TEST_USER_ID

    def test_unknown_and_empty_tokens(self, app):
        assert validate_token("wrong") is None
        assert validate_token("") is None
