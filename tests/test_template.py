"""Tests for {{var}} extraction and RequestTemplate rendering."""

import pytest

from terzi.errors import MissingRequiredVariable, UnresolvedVariable
from terzi.request import RequestBuilder
from terzi.template import (
    RequestTemplate,
    TemplateVariable,
    VariableType,
    extract_template_variables,
    substitute,
)


def _template(url="https://{{host}}/users/{{id}}", headers=None, body=None):
    builder = RequestBuilder(url)
    for k, v in (headers or {}).items():
        builder.header(k, v)
    if body is not None:
        builder.raw_body(body)
    return RequestTemplate(name="get-user", base_request=builder.build())


# ── extract_template_variables ───────────────────────────────────────────


class TestExtract:
    def test_sorted_and_deduplicated(self):
        assert extract_template_variables("{{b}} {{a}} {{b}}") == ["a", "b"]

    def test_names_are_trimmed(self):
        assert extract_template_variables("{{ host }}") == ["host"]

    def test_blank_names_skipped(self):
        assert extract_template_variables("{{}} {{  }} {{x}}") == ["x"]

    def test_stops_at_unterminated(self):
        assert extract_template_variables("{{a}} {{unterminated") == ["a"]

    def test_none_found(self):
        assert extract_template_variables("plain text") == []


# ── substitute ───────────────────────────────────────────────────────────


class TestSubstitute:
    def test_replaces_known(self):
        assert substitute("{{a}}-{{b}}", {"a": "1", "b": "2"}) == "1-2"

    def test_leaves_unknown(self):
        assert substitute("{{a}}-{{z}}", {"a": "1"}) == "1-{{z}}"

    def test_single_pass(self):
        assert substitute("{{a}}", {"a": "{{b}}", "b": "x"}) == "{{b}}"


# ── render ───────────────────────────────────────────────────────────────


class TestRender:
    def test_environment_then_overrides(self):
        tpl = _template()
        tpl.add_environment("staging", {"host": "staging.example.com", "id": "1"})
        req = tpl.render("staging", {"id": "42"})
        assert req.url == "https://staging.example.com/users/42"

    def test_headers_and_body_rendered(self):
        tpl = _template(
            url="https://api.example.com",
            headers={"Authorization": "Bearer {{token}}"},
            body='{"user": "{{user}}"}',
        )
        req = tpl.render(variables={"token": "abc", "user": "john"})
        assert req.headers["Authorization"] == "Bearer abc"
        assert req.body == '{"user": "john"}'

    def test_unknown_environment_is_ignored(self):
        tpl = _template()
        req = tpl.render("nope", {"host": "h.example.com", "id": "1"})
        assert req.url == "https://h.example.com/users/1"

    def test_defaults_fill_gaps(self):
        tpl = _template()
        tpl.add_variable(TemplateVariable(name="host", default_value="default.example.com"))
        req = tpl.render(variables={"id": "7"})
        assert req.url == "https://default.example.com/users/7"

    def test_explicit_value_beats_default(self):
        tpl = _template()
        tpl.add_variable(TemplateVariable(name="host", default_value="default.example.com"))
        req = tpl.render(variables={"host": "mine.example.com", "id": "7"})
        assert req.url == "https://mine.example.com/users/7"

    def test_missing_required(self):
        tpl = _template()
        tpl.add_variable(TemplateVariable(name="id", required=True))
        with pytest.raises(MissingRequiredVariable) as exc:
            tpl.render(variables={"host": "h.example.com"})
        assert exc.value.name == "id"

    def test_required_with_default_is_fine(self):
        tpl = _template()
        tpl.add_variable(TemplateVariable(name="id", required=True, default_value="1"))
        assert tpl.render(variables={"host": "h.example.com"}).url.endswith("/users/1")

    def test_unresolved_reports_full_token(self):
        tpl = _template(url="https://api.example.com/{{missing}}")
        with pytest.raises(UnresolvedVariable) as exc:
            tpl.render()
        assert exc.value.token == "{{missing}}"

    def test_unresolved_order_url_first(self):
        tpl = _template(
            url="https://api.example.com/{{in_url}}",
            headers={"X-A": "{{in_header}}"},
            body="{{in_body}}",
        )
        with pytest.raises(UnresolvedVariable) as exc:
            tpl.render()
        assert exc.value.token == "{{in_url}}"

    def test_unresolved_order_headers_before_body(self):
        tpl = _template(
            url="https://api.example.com",
            headers={"X-A": "ok", "X-B": "{{in_header}}"},
            body="{{in_body}}",
        )
        with pytest.raises(UnresolvedVariable) as exc:
            tpl.render()
        assert exc.value.token == "{{in_header}}"

    def test_values_are_not_rescanned(self):
        tpl = _template(url="https://api.example.com/{{a}}")
        with pytest.raises(UnresolvedVariable) as exc:
            tpl.render(variables={"a": "{{b}}", "b": "x"})
        assert exc.value.token == "{{b}}"

    def test_template_not_mutated(self):
        tpl = _template()
        before = tpl.base_request.to_dict()
        tpl.render(variables={"host": "h.example.com", "id": "1"})
        assert tpl.base_request.to_dict() == before

    def test_render_is_idempotent(self):
        tpl = _template()
        tpl.add_environment("prod", {"host": "api.example.com"})
        first = tpl.render("prod", {"id": "5"})
        second = tpl.render("prod", {"id": "5"})
        assert first.url == second.url
        assert first.headers == second.headers
        assert first.body == second.body

    def test_no_placeholders_renders_unchanged(self):
        tpl = _template(url="https://api.example.com/plain")
        assert tpl.render().url == "https://api.example.com/plain"


# ── Introspection and serialization ──────────────────────────────────────


class TestTemplateModel:
    def test_placeholders(self):
        tpl = _template(headers={"X-T": "{{token}}"}, body="{{payload}}")
        assert tpl.placeholders() == ["host", "id", "payload", "token"]

    def test_required_variables(self):
        tpl = _template()
        tpl.add_variable(TemplateVariable(name="b", required=True))
        tpl.add_variable(TemplateVariable(name="a", required=True))
        tpl.add_variable(TemplateVariable(name="c"))
        assert tpl.required_variables() == ["a", "b"]

    def test_dict_round_trip(self):
        tpl = _template()
        tpl.add_variable(
            TemplateVariable(name="id", required=True, variable_type=VariableType.NUMBER),
        )
        tpl.add_environment("dev", {"host": "localhost"})
        restored = RequestTemplate.from_dict(tpl.to_dict())
        assert restored == tpl
        assert restored.variables["id"].variable_type is VariableType.NUMBER
