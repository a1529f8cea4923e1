"""
Unit tests for the NL2SQL query guardrail.

Tests statement classification, schema resolution, injection shapes and
row-limit normalization against the packaged sales domain.
"""

import pytest
from backend.batch.utilities.nl2sql import (
    Accepted,
    CandidateQuery,
    GuardrailConfig,
    QueryValidator,
    Rejected,
    RejectionReason,
    validate_query,
)


def assert_rejected(verdict, reason: RejectionReason):
    assert isinstance(verdict, Rejected), f"expected {reason.value}, got {verdict!r}"
    assert verdict.reason_code is reason, verdict.describe()


def assert_accepted(verdict) -> str:
    assert isinstance(verdict, Accepted), verdict.describe()
    return verdict.normalized_text


class TestGuardrailAcceptance:
    """Tests for queries the guardrail must accept."""

    def test_simple_aggregate_gets_default_limit(self, sales_context):
        """Test that an unlimited aggregate is accepted with LIMIT appended."""
        sql = "SELECT SUM(amount) FROM sales.orders WHERE product='X' AND quarter='Q3'"

        normalized = assert_accepted(validate_query(sql, sales_context))

        assert normalized == sql + " LIMIT 1000"

    def test_join_with_aliases(self, sales_context):
        """Test that an aliased inner join with ON is accepted."""
        sql = """
            SELECT c.segment, SUM(o.amount) AS revenue
            FROM sales.orders o
            JOIN sales.customers c ON o.customer_id = c.customer_id
            GROUP BY c.segment
            ORDER BY revenue DESC
        """
        normalized = assert_accepted(validate_query(sql, sales_context))
        assert normalized.endswith("LIMIT 1000")

    def test_alias_with_as_keyword(self, sales_context):
        """Test that table aliases introduced with AS resolve."""
        sql = "SELECT ord.region FROM sales.orders AS ord WHERE ord.quantity > 5"
        assert_accepted(validate_query(sql, sales_context))

    def test_unqualified_table_name_resolves(self, sales_context):
        """Test that a bare table name matching one declared table is accepted."""
        assert_accepted(validate_query("SELECT amount FROM orders", sales_context))

    def test_table_name_qualifier_on_column(self, sales_context):
        """Test that columns qualified by the table name resolve."""
        sql = "SELECT orders.amount FROM sales.orders"
        assert_accepted(validate_query(sql, sales_context))

    def test_common_table_expression(self, sales_context):
        """Test that a CTE and its output aliases are accepted."""
        sql = (
            "WITH q3 AS (SELECT region, SUM(amount) AS revenue FROM sales.orders "
            "WHERE quarter = 'Q3' GROUP BY region) "
            "SELECT region, revenue FROM q3 ORDER BY revenue DESC"
        )
        assert_accepted(validate_query(sql, sales_context))

    def test_derived_table(self, sales_context):
        """Test that a derived table alias can qualify its columns."""
        sql = "SELECT t.region FROM (SELECT region FROM sales.orders) t"
        assert_accepted(validate_query(sql, sales_context))

    def test_in_subquery(self, sales_context):
        """Test that an IN subquery against another declared table is accepted."""
        sql = (
            "SELECT order_id, amount FROM sales.orders WHERE customer_id IN "
            "(SELECT customer_id FROM sales.customers WHERE segment = 'Retail')"
        )
        assert_accepted(validate_query(sql, sales_context))

    def test_comma_join_with_filter(self, sales_context):
        """Test that a comma join bounded by WHERE is accepted."""
        sql = (
            "SELECT o.amount, c.segment FROM sales.orders o, sales.customers c "
            "WHERE o.customer_id = c.customer_id"
        )
        assert_accepted(validate_query(sql, sales_context))

    def test_case_expression_and_implicit_alias(self, sales_context):
        """Test that CASE expressions and bare output aliases are accepted."""
        sql = (
            "SELECT CASE WHEN amount > 500 THEN 'large' ELSE 'small' END size_band, "
            "COUNT(*) AS orders_in_band FROM sales.orders GROUP BY size_band"
        )
        assert_accepted(validate_query(sql, sales_context))

    def test_identifiers_are_case_insensitive(self, sales_context):
        """Test that upper-case identifiers match declared lower-case names."""
        sql = "SELECT REGION, SUM(AMOUNT) AS TOTAL FROM SALES.ORDERS GROUP BY REGION"
        assert_accepted(validate_query(sql, sales_context))

    def test_packaged_examples_are_accepted(self, sales_context, inventory_context):
        """Test that every worked example shipped with a domain passes."""
        for context in (sales_context, inventory_context):
            for example in context.examples:
                assert_accepted(validate_query(example.sql, context))


class TestGuardrailStatementShape:
    """Tests for statement type and count checks."""

    def test_delete_rejected(self, sales_context):
        """Test that DELETE is rejected as a disallowed statement type."""
        verdict = validate_query("DELETE FROM sales.orders", sales_context)
        assert_rejected(verdict, RejectionReason.DISALLOWED_STATEMENT_TYPE)

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM sales.orders WHERE 1=1",
            "UPDATE sales.orders SET amount = 0",
            "INSERT INTO sales.orders (order_id) VALUES ('x')",
            "DROP TABLE sales.orders",
            "TRUNCATE TABLE sales.orders",
            "GRANT SELECT ON sales.orders TO PUBLIC",
            "SELECT amount INTO backup_orders FROM sales.orders",
        ],
    )
    def test_write_and_privilege_statements_rejected(self, sales_context, sql):
        """Test that writes, DDL and privilege changes are rejected."""
        verdict = validate_query(sql, sales_context)
        assert_rejected(verdict, RejectionReason.DISALLOWED_STATEMENT_TYPE)

    def test_multiple_statements_rejected(self, sales_context):
        """Test that stacked statements are rejected."""
        sql = "SELECT amount FROM sales.orders; SELECT region FROM sales.orders"
        verdict = validate_query(sql, sales_context)
        assert_rejected(verdict, RejectionReason.MULTIPLE_STATEMENTS)

    def test_trailing_semicolon_allowed(self, sales_context):
        """Test that a single trailing terminator is dropped, not rejected."""
        normalized = assert_accepted(
            validate_query("SELECT amount FROM sales.orders;", sales_context)
        )
        assert normalized == "SELECT amount FROM sales.orders LIMIT 1000"

    @pytest.mark.parametrize("sql", ["", "   ", ";"])
    def test_empty_statement_rejected(self, sales_context, sql):
        """Test that empty input is malformed."""
        assert_rejected(validate_query(sql, sales_context), RejectionReason.MALFORMED_SQL)

    def test_unbalanced_parentheses_rejected(self, sales_context):
        """Test that unbalanced parentheses are malformed."""
        verdict = validate_query("SELECT SUM(amount FROM sales.orders", sales_context)
        assert_rejected(verdict, RejectionReason.MALFORMED_SQL)


class TestGuardrailSchemaResolution:
    """Tests for the closed-world schema checks."""

    def test_information_schema_rejected(self, sales_context):
        """Test that catalog views are rejected as a system namespace."""
        verdict = validate_query(
            "SELECT table_name FROM information_schema.tables", sales_context
        )
        assert_rejected(verdict, RejectionReason.SYSTEM_NAMESPACE)

    def test_sqlite_master_rejected(self, sales_context):
        """Test that the SQLite catalog is rejected as a system namespace."""
        verdict = validate_query("SELECT name FROM sqlite_master", sales_context)
        assert_rejected(verdict, RejectionReason.SYSTEM_NAMESPACE)

    def test_undeclared_table_rejected(self, sales_context):
        """Test that a table outside the domain is rejected."""
        verdict = validate_query("SELECT salary FROM hr.salaries", sales_context)
        assert_rejected(verdict, RejectionReason.UNKNOWN_TABLE)

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM text",
            "SELECT * FROM year",
            "SELECT * FROM current",
            "SELECT amount FROM sales.orders WHERE region IN (SELECT region FROM time)",
            "SELECT o.amount FROM sales.orders o, year WHERE o.amount > 1",
        ],
    )
    def test_reserved_word_as_table_rejected(self, sales_context, sql):
        """Test that a reserved word in table position is an undeclared table."""
        assert_rejected(validate_query(sql, sales_context), RejectionReason.UNKNOWN_TABLE)

    def test_reserved_word_table_detail_names_the_word(self, sales_context):
        """Test that the rejection names the reserved word rather than its alias."""
        sql = (
            "SELECT o.amount FROM sales.orders o "
            "JOIN date d ON o.customer_id = d.customer_id"
        )
        verdict = validate_query(sql, sales_context)

        assert_rejected(verdict, RejectionReason.UNKNOWN_TABLE)
        assert "date" in verdict.detail
        assert "table d " not in verdict.detail

    def test_declared_table_under_other_schema_rejected(self, sales_context):
        """Test that a declared table name under an undeclared schema is rejected."""
        verdict = validate_query("SELECT amount FROM finance.orders", sales_context)
        assert_rejected(verdict, RejectionReason.UNKNOWN_TABLE)

    def test_other_domain_table_rejected(self, sales_context):
        """Test that a table declared only by another domain is rejected."""
        verdict = validate_query(
            "SELECT on_hand FROM inventory.stock_levels", sales_context
        )
        assert_rejected(verdict, RejectionReason.UNKNOWN_TABLE)

    def test_undeclared_column_rejected(self, sales_context):
        """Test that a column that is not declared is rejected."""
        verdict = validate_query("SELECT discount FROM sales.orders", sales_context)
        assert_rejected(verdict, RejectionReason.UNKNOWN_COLUMN)

    def test_column_of_unreferenced_table_rejected(self, sales_context):
        """Test that columns only resolve against the tables the query uses."""
        verdict = validate_query("SELECT segment FROM sales.orders", sales_context)
        assert_rejected(verdict, RejectionReason.UNKNOWN_COLUMN)

    def test_qualified_column_on_wrong_table_rejected(self, sales_context):
        """Test that alias-qualified columns are checked against that table."""
        sql = (
            "SELECT o.segment FROM sales.orders o "
            "JOIN sales.customers c ON o.customer_id = c.customer_id"
        )
        verdict = validate_query(sql, sales_context)
        assert_rejected(verdict, RejectionReason.UNKNOWN_COLUMN)

    def test_unknown_qualifier_rejected(self, sales_context):
        """Test that a qualifier naming no table in the query is rejected."""
        verdict = validate_query("SELECT x.amount FROM sales.orders o", sales_context)
        assert_rejected(verdict, RejectionReason.UNKNOWN_COLUMN)


class TestGuardrailInjection:
    """Tests for injection shapes and blocked functions."""

    def test_line_comment_rejected(self, sales_context):
        """Test that SQL line comments are rejected."""
        verdict = validate_query(
            "SELECT amount FROM sales.orders -- all rows", sales_context
        )
        assert_rejected(verdict, RejectionReason.INJECTION_PATTERN)

    def test_block_comment_rejected(self, sales_context):
        """Test that block comments are rejected."""
        verdict = validate_query(
            "SELECT amount /* hidden */ FROM sales.orders", sales_context
        )
        assert_rejected(verdict, RejectionReason.INJECTION_PATTERN)

    def test_union_rejected(self, sales_context):
        """Test that set operations are rejected."""
        sql = (
            "SELECT region FROM sales.orders "
            "UNION SELECT customer_name FROM sales.customers"
        )
        assert_rejected(validate_query(sql, sales_context), RejectionReason.INJECTION_PATTERN)

    def test_constant_or_tautology_rejected(self, sales_context):
        """Test that OR 1=1 is rejected."""
        sql = "SELECT amount FROM sales.orders WHERE product = 'X' OR 1=1"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.INJECTION_PATTERN)

    def test_leading_constant_or_rejected(self, sales_context):
        """Test that a constant comparison before OR is rejected."""
        sql = "SELECT amount FROM sales.orders WHERE 1=1 OR amount > 0"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.INJECTION_PATTERN)

    def test_parenthesised_constant_or_rejected(self, sales_context):
        """Test that a bracketed constant comparison before OR is rejected."""
        sql = "SELECT amount FROM sales.orders WHERE (1=1) OR amount > 0"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.INJECTION_PATTERN)

    def test_string_tautology_rejected(self, sales_context):
        """Test that OR 'a'='a' is rejected."""
        sql = "SELECT amount FROM sales.orders WHERE product = 'X' OR 'a' = 'a'"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.INJECTION_PATTERN)

    def test_literal_with_comment_marker_rejected(self, sales_context):
        """Test that string literals carrying comment markers are rejected."""
        sql = "SELECT amount FROM sales.orders WHERE product = 'X--'"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.INJECTION_PATTERN)

    def test_sleep_function_rejected(self, sales_context):
        """Test that blocked functions are rejected."""
        verdict = validate_query("SELECT SLEEP(5) FROM sales.orders", sales_context)
        assert_rejected(verdict, RejectionReason.DISALLOWED_FUNCTION)

    def test_file_function_rejected(self, sales_context):
        """Test that file-reading functions are rejected."""
        verdict = validate_query(
            "SELECT LOAD_FILE('/etc/passwd') AS f FROM sales.orders", sales_context
        )
        assert_rejected(verdict, RejectionReason.DISALLOWED_FUNCTION)

    def test_configured_blocked_function_rejected(self, sales_context):
        """Test that the blocked function list is configurable."""
        config = GuardrailConfig(blocked_functions=frozenset({"MEDIAN"}))
        verdict = validate_query(
            "SELECT MEDIAN(amount) AS m FROM sales.orders", sales_context, config
        )
        assert_rejected(verdict, RejectionReason.DISALLOWED_FUNCTION)


class TestGuardrailJoinsAndAmbiguity:
    """Tests for cross joins and constructs the guardrail cannot classify."""

    def test_comma_join_without_filter_rejected(self, sales_context):
        """Test that an unfiltered comma join is rejected."""
        sql = "SELECT o.amount, c.segment FROM sales.orders o, sales.customers c"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.UNBOUNDED_CROSS_JOIN)

    def test_cross_join_without_filter_rejected(self, sales_context):
        """Test that an explicit CROSS JOIN without WHERE is rejected."""
        sql = "SELECT o.amount FROM sales.orders o CROSS JOIN sales.customers c"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.UNBOUNDED_CROSS_JOIN)

    def test_join_without_condition_rejected(self, sales_context):
        """Test that a JOIN without ON or WHERE is rejected."""
        sql = "SELECT o.amount FROM sales.orders o JOIN sales.customers c"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.UNBOUNDED_CROSS_JOIN)

    def test_join_on_constant_rejected(self, sales_context):
        """Test that a JOIN whose ON compares only constants is unbounded."""
        sql = "SELECT o.amount FROM sales.orders o JOIN sales.customers c ON 1=1"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.UNBOUNDED_CROSS_JOIN)

    def test_cross_join_with_constant_where_rejected(self, sales_context):
        """Test that WHERE 1=1 does not bound a CROSS JOIN."""
        sql = "SELECT o.amount FROM sales.orders o CROSS JOIN sales.customers c WHERE 1=1"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.UNBOUNDED_CROSS_JOIN)

    def test_cross_join_with_column_filter_accepted(self, sales_context):
        """Test that a CROSS JOIN bounded by a column predicate is accepted."""
        sql = (
            "SELECT o.amount FROM sales.orders o CROSS JOIN sales.customers c "
            "WHERE o.customer_id = c.customer_id"
        )
        assert_accepted(validate_query(sql, sales_context))

    def test_join_using_accepted(self, sales_context):
        """Test that JOIN ... USING counts as a join condition."""
        sql = "SELECT amount, segment FROM sales.orders JOIN sales.customers USING (customer_id)"
        assert_accepted(validate_query(sql, sales_context))

    def test_natural_join_rejected(self, sales_context):
        """Test that NATURAL JOIN is ambiguous."""
        sql = "SELECT amount FROM sales.orders NATURAL JOIN sales.customers"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.AMBIGUOUS_CONSTRUCT)

    def test_placeholder_rejected(self, sales_context):
        """Test that unbound placeholders are ambiguous."""
        sql = "SELECT amount FROM sales.orders WHERE product = ?"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.AMBIGUOUS_CONSTRUCT)

    def test_non_literal_limit_rejected(self, sales_context):
        """Test that LIMIT must be an integer literal."""
        sql = "SELECT amount FROM sales.orders LIMIT quantity"
        assert_rejected(validate_query(sql, sales_context), RejectionReason.AMBIGUOUS_CONSTRUCT)


class TestGuardrailNormalization:
    """Tests for row-limit normalization."""

    def test_large_limit_lowered(self, sales_context):
        """Test that a LIMIT above the default is lowered."""
        normalized = assert_accepted(
            validate_query("SELECT amount FROM sales.orders LIMIT 5000", sales_context)
        )
        assert normalized == "SELECT amount FROM sales.orders LIMIT 1000"

    def test_small_limit_kept(self, sales_context):
        """Test that a LIMIT within the default is kept."""
        sql = "SELECT amount FROM sales.orders ORDER BY amount DESC LIMIT 10"
        assert assert_accepted(validate_query(sql, sales_context)) == sql

    def test_limit_inserted_before_offset(self, sales_context):
        """Test that LIMIT is placed before a bare OFFSET."""
        sql = "SELECT amount FROM sales.orders ORDER BY amount OFFSET 20"
        normalized = assert_accepted(validate_query(sql, sales_context))
        assert normalized == "SELECT amount FROM sales.orders ORDER BY amount LIMIT 1000 OFFSET 20"

    def test_configured_row_limit(self, sales_context):
        """Test that the default row limit comes from configuration."""
        config = GuardrailConfig(default_row_limit=50)
        normalized = assert_accepted(
            validate_query("SELECT amount FROM sales.orders", sales_context, config)
        )
        assert normalized.endswith("LIMIT 50")

    def test_subquery_limit_does_not_count(self, sales_context):
        """Test that only a top-level LIMIT satisfies the row bound."""
        sql = "SELECT t.region FROM (SELECT region FROM sales.orders LIMIT 5) t"
        normalized = assert_accepted(validate_query(sql, sales_context))
        assert normalized.endswith(") t LIMIT 1000")

    def test_normalization_is_idempotent(self, sales_context):
        """Test that validating normalized text returns it unchanged."""
        sql = "SELECT region, SUM(amount) AS revenue FROM sales.orders GROUP BY region"
        first = assert_accepted(validate_query(sql, sales_context))
        second = assert_accepted(validate_query(first, sales_context))
        assert first == second

    def test_validation_is_deterministic(self, sales_context):
        """Test that the same input always yields the same verdict."""
        sql = "SELECT discount FROM sales.orders"
        assert validate_query(sql, sales_context) == validate_query(sql, sales_context)


class TestQueryValidator:
    """Tests for the domain-bound validator."""

    def test_validates_candidate_text(self, sales_validator):
        """Test that the candidate text is validated for the bound domain."""
        candidate = CandidateQuery(text="SELECT amount FROM sales.orders", source="sales")
        verdict = sales_validator.validate(candidate)
        assert isinstance(verdict, Accepted)

    def test_candidate_for_other_domain_rejected(self, sales_validator):
        """Test that a candidate generated for another domain is rejected."""
        candidate = CandidateQuery(
            text="SELECT amount FROM sales.orders", source="inventory"
        )
        verdict = sales_validator.validate(candidate)
        assert_rejected(verdict, RejectionReason.AMBIGUOUS_CONSTRUCT)

    def test_rejection_describe_and_dict(self, sales_validator):
        """Test that rejections describe themselves without the SQL text."""
        candidate = CandidateQuery(text="DELETE FROM sales.orders", source="sales")
        verdict = sales_validator.validate(candidate)

        assert verdict.describe().startswith("DisallowedStatementType: ")
        assert verdict.to_dict() == {
            "verdict": "Rejected",
            "reason_code": "DisallowedStatementType",
        }
