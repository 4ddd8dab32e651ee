"""
Tests for the query adapter: parameter binding, error classification and
result shaping.
"""
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import psycopg2
import pytest
from psycopg2 import sql

from src.reports_api import operations as ops
from src.reports_api.db import Result
from src.reports_api.errors import (
    Conflict,
    ConnectionUnavailable,
    InternalError,
    NotFound,
    Timeout,
    ValidationError,
    classify_db_error,
    validation_message,
)
from src.reports_api.query_adapter import (
    Date,
    Int,
    Numeric,
    Operation,
    Param,
    Procedure,
    Query,
    VarChar,
    as_envelope,
    as_record,
    as_renamed,
    as_rows,
    as_status,
    run,
)
from src.reports_api.schemas import HighValueReportRequest


def _high_value_request(**overrides):
    body = {
        "branchName": "MAIN",
        "section": "GOLD",
        "scheme": "GL-01",
        "minAmount": "100000",
        "maxAmount": "250000.50",
        "fromDate": "2024-01-01",
        "toDate": "2024-03-31",
    }
    body.update(overrides)
    return body


class TestBinding:

    def test_high_value_parameters(self):
        request = HighValueReportRequest(**_high_value_request())

        params = ops.HIGH_VALUE_TRANSACTIONS.bind(request)

        assert params == {
            "br_name": "MAIN",
            "section": "GOLD",
            "scheme": "GL-01",
            "amount": Decimal("100000.00"),
            "amount2": Decimal("250000.50"),
            "frdate": date(2024, 1, 1),
            "todate": date(2024, 3, 31),
        }

    def test_legacy_amount_aliases(self):
        body = _high_value_request()
        del body["minAmount"], body["maxAmount"]
        body.update({"amount1": 5, "amount2": 10})

        request = HighValueReportRequest(**body)

        assert request.min_amount == Decimal("5")
        assert request.max_amount == Decimal("10")

    def test_binds_from_mapping(self):
        assert ops.GET_DOCUMENT.bind({"id": "42"}) == {"id": 42}

    def test_missing_request_is_rejected(self):
        with pytest.raises(ValidationError):
            ops.LIST_SCHEMES.bind(None)

    def test_operation_without_params_binds_nothing(self):
        assert ops.LIST_BRANCHES.bind() == {}

    def test_varchar_length_enforced(self):
        with pytest.raises(ValidationError) as exc_info:
            VarChar(5).coerce("br_name", "TOO-LONG")

        assert exc_info.value.status_code == 400
        assert "br_name" in exc_info.value.detail

    def test_numeric_rounds_half_up(self):
        assert Numeric(18, 2).coerce("amount", "1.005") == Decimal("1.01")

    def test_numeric_rejects_non_numbers(self):
        with pytest.raises(ValidationError):
            Numeric().coerce("amount", "abc")

    def test_date_parses_iso_strings(self):
        assert Date().coerce("frdate", "2024-02-29") == date(2024, 2, 29)

    def test_date_rejects_garbage(self):
        with pytest.raises(ValidationError):
            Date().coerce("frdate", "29/02/2024")

    def test_int_rejects_garbage(self):
        with pytest.raises(ValidationError):
            Int().coerce("id", "abc")

    def test_none_passes_through(self):
        assert VarChar(10).coerce("x", None) is None
        assert Numeric().coerce("x", None) is None


class TestTargets:

    def test_query_renders_its_text(self):
        assert Query("SELECT 1").render(()) == "SELECT 1"

    def test_procedure_renders_composed_call(self):
        statement = Procedure("audithvtranrpt_sp").render(ops.HIGH_VALUE_TRANSACTIONS.params)

        assert isinstance(statement, sql.Composed)


class TestClassification:

    def test_missing_procedure(self):
        exc = psycopg2.ProgrammingError('Could not find stored procedure "AuditHVTranRpt_SP".')

        error = classify_db_error(exc, "audithvtranrpt_sp")

        assert isinstance(error, NotFound)
        assert error.status_code == 500
        assert error.detail == "Stored procedure 'audithvtranrpt_sp' not found in database."

    def test_undefined_function_message(self):
        exc = psycopg2.ProgrammingError("function audithvtranrpt_sp(br_name => character varying) does not exist")

        error = classify_db_error(exc, "audithvtranrpt_sp")

        assert error.status_code == 500
        assert "Stored procedure" in error.detail

    def test_missing_table(self):
        exc = psycopg2.ProgrammingError('relation "menu_report_tbl" does not exist')

        error = classify_db_error(exc, "report_menu")

        assert isinstance(error, NotFound)
        assert error.status_code == 500
        assert "report_menu" in error.detail

    def test_duplicate_key(self):
        exc = psycopg2.IntegrityError('duplicate key value violates unique constraint "tbl_usermaster_user_name_key"')

        error = classify_db_error(exc, "create_user")

        assert isinstance(error, Conflict)
        assert error.status_code == 409

    def test_statement_timeout(self):
        exc = psycopg2.OperationalError("canceling statement due to statement timeout")

        error = classify_db_error(exc, "regmembers_sp")

        assert isinstance(error, Timeout)
        assert error.status_code == 504

    def test_sqlstate_takes_precedence(self):
        class CanceledError(psycopg2.Error):
            pgcode = "57014"

        error = classify_db_error(CanceledError("canceling statement due to user request"), "x")

        assert isinstance(error, Timeout)

    def test_parameter_mismatch(self):
        exc = psycopg2.ProgrammingError("wrong number of parameters for prepared statement")

        error = classify_db_error(exc, "regmembersreport_sp")

        assert isinstance(error, InternalError)
        assert error.detail == "Parameter mismatch in call to 'regmembersreport_sp'."

    def test_lost_connection(self):
        error = classify_db_error(psycopg2.OperationalError("server closed the connection unexpectedly"), "x")

        assert isinstance(error, ConnectionUnavailable)
        assert error.status_code == 503

    def test_connect_timeout_is_unavailable(self):
        error = classify_db_error(psycopg2.OperationalError("timeout expired"), "x")

        assert isinstance(error, ConnectionUnavailable)
        assert error.status_code == 503

    def test_timeout_in_identifier_is_not_a_timeout(self):
        exc = psycopg2.ProgrammingError('relation "timeout_log" does not exist')

        error = classify_db_error(exc, "audit_log")

        assert isinstance(error, NotFound)
        assert error.status_code == 500

    def test_anything_else(self):
        error = classify_db_error(psycopg2.DataError("division by zero"), "complaintregister_sp")

        assert isinstance(error, InternalError)
        assert error.detail == "Failed to execute 'complaintregister_sp'."

    def test_raw_message_hidden_unless_exposed(self):
        exc = psycopg2.DataError("division by zero")

        assert "division by zero" not in classify_db_error(exc, "x").detail
        assert "division by zero" in classify_db_error(exc, "x", expose=True).detail


class TestValidationMessage:

    def test_field_and_message(self):
        errors = [{"loc": ("body", "branchName"), "msg": "String should have at most 10 characters"}]

        assert validation_message(errors) == "branchName: String should have at most 10 characters"

    def test_model_level_error_strips_prefix(self):
        errors = [{"loc": ("body",), "msg": "Value error, Minimum amount cannot be greater than maximum amount"}]

        assert validation_message(errors) == "Minimum amount cannot be greater than maximum amount"

    def test_no_errors(self):
        assert validation_message([]) == "Invalid request"


class TestShapers:

    ROWS = [{"mnu_id": 1, "mnu_caption": "HV", "secret": "x"}]

    def test_rows_dropping_columns(self):
        assert as_rows("rows", drop=("secret",))(self.ROWS, 1) == {"rows": [{"mnu_id": 1, "mnu_caption": "HV"}]}

    def test_bare_rows(self):
        assert as_rows()(self.ROWS, 1) == self.ROWS

    def test_renamed(self):
        shaped = as_renamed({"mnu_id": "id", "mnu_caption": "caption"}, "menuItems")(self.ROWS, 1)

        assert shaped == {"menuItems": [{"id": 1, "caption": "HV"}]}

    def test_record_missing(self):
        with pytest.raises(NotFound) as exc_info:
            as_record("document", "Document not found")([], 0)

        assert exc_info.value.status_code == 404

    def test_envelope(self):
        shaped = as_envelope("done")(self.ROWS, 1)

        assert shaped["count"] == 1
        assert shaped["data"] == self.ROWS

    def test_status_clamps_unknown_rowcount(self):
        assert as_status("saved")([], -1)["rowsAffected"] == 0


class TestRun:

    def test_executes_and_shapes(self):
        with patch("src.reports_api.db.execute") as mock_execute:
            mock_execute.return_value = Result([{"br_name": "MAIN"}, {"br_name": "WEST"}], 2)

            payload = run(ops.LIST_BRANCHES)

        assert payload == {"branches": ["MAIN", "WEST"]}
        statement, params = mock_execute.call_args[0]
        assert "gen_branchdetails_p_tbl" in statement
        assert params == {}

    def test_driver_error_is_classified(self):
        with patch("src.reports_api.db.execute") as mock_execute:
            mock_execute.side_effect = psycopg2.ProgrammingError("Could not find stored procedure 'ComplaintRegister_SP'")

            with pytest.raises(NotFound) as exc_info:
                run(ops.COMPLAINT_REGISTER)

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "Stored procedure 'complaintregister_sp' not found in database."

    def test_validation_failure_skips_database(self):
        operation = Operation("t", Query("SELECT %(v)s"), params=(Param("v", VarChar(2)),))

        with patch("src.reports_api.db.execute") as mock_execute:
            with pytest.raises(ValidationError):
                run(operation, {"v": "long"})

        mock_execute.assert_not_called()
