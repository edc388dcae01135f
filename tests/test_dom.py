"""
Tests for dom.py, urls.py and entities.py helpers.
"""

from docucrawl.dom import clean_dom, count_login_inputs, has_login_form, health_issue, page_signals
from docucrawl.entities import EntityResolver, id_from_url, looks_like_id, new_row_id
from docucrawl.urls import fill_entity_placeholder, has_entity_placeholder, is_auth_url, join_url, route_matches


class TestCleanDom:

    def test_strips_noise_tags(self):
        html = "<html><head><style>p{}</style></head><body><script>x()</script><svg></svg><p>Hello</p></body></html>"
        cleaned = clean_dom(html)
        assert "script" not in cleaned
        assert "svg" not in cleaned
        assert "<p>Hello</p>" in cleaned

    def test_truncates_to_token_budget(self):
        html = "<body><p>" + "x" * 1000 + "</p></body>"
        assert len(clean_dom(html, max_tokens=10)) == 40


class TestPageSignals:

    def test_form_and_table(self):
        s = page_signals("<body><form><input></form><table></table></body>", "Team")
        assert s.has_form and s.has_table and not s.has_error

    def test_404_title_is_error(self):
        assert page_signals("<body><p>Nothing here</p></body>", "404 | Acme").has_error

    def test_error_text_on_page_with_form_is_not_error(self):
        s = page_signals("<body><form><input></form><p>Fix the error below</p></body>", "Signup")
        assert not s.has_error

    def test_nav_labels_collected(self):
        s = page_signals("<body><nav><a href='/a'>Projects</a><a href='/b'>Team</a></nav></body>")
        assert s.nav_labels == ["Projects", "Team"]


class TestHealth:

    def test_browser_error_url(self):
        assert health_issue("chrome-error://chromewebdata/", "") == "browser error page"

    def test_clean_page(self):
        assert health_issue("https://a.com/x", "<body><h1>Projects</h1></body>") is None

    def test_login_form_detection(self):
        html = "<body><input type='email'><input type='password'></body>"
        assert count_login_inputs(html) == 2
        assert has_login_form(html)
        assert not has_login_form("<body><input type='text'></body>")


class TestUrls:

    def test_join_url(self):
        assert join_url("https://a.com", "/projects") == "https://a.com/projects"
        assert join_url("https://a.com/app/", "settings") == "https://a.com/app/settings"

    def test_route_matches_dynamic_segments(self):
        assert route_matches("/projects/[id]", "/projects/42")
        assert route_matches("/projects/:id/edit", "/projects/42/edit")
        assert not route_matches("/projects/[id]", "/projects")
        assert not route_matches("/team", "/teams")

    def test_auth_url(self):
        assert is_auth_url("https://a.com/auth/callback?x=1")
        assert not is_auth_url("https://a.com/dashboard")

    def test_auth_url_matches_whole_segments(self):
        assert is_auth_url("https://a.com/login/")
        assert is_auth_url("https://a.com/sign-in/sso")
        assert not is_auth_url("https://a.com/authors")
        assert not is_auth_url("https://a.com/oauth-apps")
        assert not is_auth_url("https://a.com/settings/login-history")

    def test_placeholders(self):
        assert has_entity_placeholder("/projects/{entity_id}")
        assert not has_entity_placeholder(None)
        assert fill_entity_placeholder("/projects/:id/settings", "7") == "/projects/7/settings"


class TestEntities:

    def test_id_patterns(self):
        assert looks_like_id("3f6c1d2e-8a4b-4c7d-9e0f-1a2b3c4d5e6f")
        assert looks_like_id("12345")
        assert looks_like_id("prj_a8Kd92lq")
        assert not looks_like_id("settings")

    def test_id_from_url(self):
        assert id_from_url("https://a.com/projects/new", "https://a.com/projects/991") == "991"
        assert id_from_url("https://a.com/projects", "https://a.com/projects") is None

    def test_new_row_id(self):
        before = "<table><tr data-id='1'></tr></table>"
        after = "<table><tr data-id='1'></tr><tr data-id='2'></tr></table>"
        assert new_row_id(before, after) == "2"

    def test_resolver_remembers_last(self):
        resolver = EntityResolver()
        resolver.resolve("https://a.com/p/new", "", "https://a.com/p/5", "")
        assert resolver.last_created_id == "5"
        assert resolver.resolve("https://a.com/p", "", "https://a.com/p", "") is None
        assert resolver.last_created_id == "5"
