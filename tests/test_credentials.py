"""
Test suite for the credential file codec

Tests line parsing, credential read/write against the integration key
mapping, and config filtering by keep/drop prefixes.
"""

import pytest

from env_admin.catalog import (
    CredentialKeys, FilterRules, Integration, IntegrationCatalog, DEFAULT_CATALOG
)
from env_admin.credentials import (
    BLANK, COMMENT, ENTRY, OTHER, CredentialCodec, format_value, parse_env, parse_line
)
from env_admin.exceptions import ValidationError


@pytest.fixture
def codec():
    return CredentialCodec(DEFAULT_CATALOG)


@pytest.fixture
def synthetic_codec():
    """Codec over a catalog whose drop list overlaps its keep list"""
    catalog = IntegrationCatalog([
        Integration(
            id="alpha",
            name="Alpha",
            directory="alpha",
            credential_keys=CredentialKeys(login="ALPHA_USER", password="ALPHA_PASS"),
            filter_rules=FilterRules(keep=("ALPHA_", "PORT="), drop=("ALPHA_SECRET",))
        ),
        Integration(
            id="plain",
            name="Plain",
            directory="plain",
            credential_keys=CredentialKeys(login="PLAIN_USER", password="PLAIN_PASS")
        ),
    ])
    return CredentialCodec(catalog)


class TestLineParsing:
    """Test the line grammar"""
    
    def test_classifies_lines(self):
        """Test blank, comment, entry and other lines"""
        assert parse_line("   ").kind == BLANK
        assert parse_line("  # note").kind == COMMENT
        assert parse_line("not an entry").kind == OTHER
        assert parse_line("=value").kind == OTHER
        
        entry = parse_line("  KEY = value ")
        assert entry.kind == ENTRY
        assert entry.key == "KEY"
        assert entry.value == "value"
    
    def test_inline_comment_needs_preceding_whitespace(self):
        """Test that only whitespace-preceded # starts a comment"""
        assert parse_line("KEY=abc # trailing").value == "abc"
        assert parse_line("KEY=abc#not-a-comment").value == "abc#not-a-comment"
    
    def test_quoted_values(self):
        """Test double and single quoted values"""
        assert parse_line('KEY="a # b"').value == "a # b"
        assert parse_line('KEY="say \\"hi\\""').value == 'say "hi"'
        assert parse_line("KEY='x \\n # y'").value == "x \\n # y"
        assert parse_line('KEY="  padded  " # comment').value == "  padded  "
    
    def test_parse_env_first_occurrence_wins(self):
        """Test parse_env ignores comments and keeps the first duplicate"""
        content = "A=1 # c\nA=2\nB='x # y'\n#C=3\n"
        assert parse_env(content) == {"A": "1", "B": "x # y"}
    
    def test_format_value_rejects_newlines(self):
        """Test values with line breaks cannot be written"""
        with pytest.raises(ValidationError):
            format_value("two\nlines")
    
    def test_format_value_quotes_only_when_needed(self):
        """Test plain values stay unquoted"""
        assert format_value("plain") == "plain"
        assert format_value("a #b") == '"a #b"'
        assert format_value(" lead") == '" lead"'


class TestCredentialRead:
    """Test reading credentials"""
    
    def test_reads_primary_keys(self, codec):
        """Test reading the primary login and password keys"""
        content = "PORT=5000\nV8_USERNAME=alice\nV8_PASSWORD=secret\n"
        assert codec.read(content, "v8") == {"login": "alice", "password": "secret"}
    
    def test_reads_alternate_keys(self, codec):
        """Test falling back to the alternate key spellings"""
        content = "V8_USR=bob\nV8_PASS=pw\n"
        assert codec.read(content, "v8") == {"login": "bob", "password": "pw"}
    
    def test_primary_key_preferred_over_alternate(self, codec):
        """Test that a primary-key line wins even when an alternate line comes first"""
        content = "V8_USR=old\nV8_USERNAME=new\n"
        assert codec.read(content, "v8") == {"login": "new"}
    
    def test_first_match_wins(self, codec):
        """Test that the first line for a key wins"""
        content = "HUBCREDITO_USR=first\nHUBCREDITO_USR=second\n"
        assert codec.read(content, "hubcredito") == {"login": "first"}
    
    def test_absent_fields_omitted(self, codec):
        """Test that missing fields are not an error"""
        assert codec.read("PORT=4000\n", "presencabank") == {}
    
    def test_crlf_content(self, codec):
        """Test Windows line endings are normalised"""
        content = "PRECENÇABANK_LOGIN=a\r\nPRECENÇABANK_SENHA=b\r\n"
        assert codec.read(content, "presencabank") == {"login": "a", "password": "b"}
    
    def test_unknown_integration(self, codec):
        """Test that an integration without a key mapping is rejected"""
        with pytest.raises(ValidationError) as exc_info:
            codec.read("A=1", "unknown")
        assert exc_info.value.code == "UNKNOWN_INTEGRATION"


class TestCredentialWrite:
    """Test writing credentials"""
    
    def test_replaces_in_place(self, codec):
        """Test that an existing line is replaced and everything else is untouched"""
        content = "# header\nPORT=4000\nV8_USERNAME=old\n\nOTHER=1\n"
        updated = codec.write(content, "v8", login="new")
        assert updated == "# header\nPORT=4000\nV8_USERNAME=new\n\nOTHER=1\n"
    
    def test_replaces_alternate_line_keeping_its_key(self, codec):
        """Test that an alternate-key line is updated under the same key"""
        assert codec.write("V8_USR=old\n", "v8", login="x") == "V8_USR=x\n"
    
    def test_appends_before_trailing_newline(self, codec):
        """Test that missing keys are appended with the primary key"""
        updated = codec.write("PORT=4000\n", "v8", password="p")
        assert updated == "PORT=4000\nV8_PASSWORD=p\n"
    
    def test_appends_to_empty_content(self, codec):
        """Test writing both fields into an empty file"""
        updated = codec.write("", "v8", login="a", password="b")
        assert updated == "V8_USERNAME=a\nV8_PASSWORD=b"
    
    def test_requires_a_field(self, codec):
        """Test that writing nothing is rejected"""
        with pytest.raises(ValidationError) as exc_info:
            codec.write("PORT=1\n", "v8")
        assert exc_info.value.code == "MISSING_CREDENTIALS"
    
    def test_rejects_unknown_integration(self, codec):
        """Test that an unknown integration is rejected"""
        with pytest.raises(ValidationError):
            codec.write("", "nope", login="a")
    
    @pytest.mark.parametrize("login,password", [
        ("user", "p#ss word"),
        ("user@example.com", "abc #def"),
        (" padded", "trailing "),
        ('"quoted', "back\\slash"),
        ("x=y", "'single'"),
    ])
    def test_round_trip_preserves_other_lines(self, codec, login, password):
        """Test read(write(...)) returns what was written and keeps unrelated lines"""
        content = "# comment\nPORT=5005\nV8_USERNAME=old\nHUBCREDITO_USR=keep\n\n"
        updated = codec.write(content, "v8", login=login, password=password)
        
        assert codec.read(updated, "v8") == {"login": login, "password": password}
        untouched = [l for l in updated.split("\n") if not l.startswith("V8_")]
        assert untouched == ["# comment", "PORT=5005", "HUBCREDITO_USR=keep", "", ""]


class TestFilter:
    """Test config filtering after a copy"""
    
    def test_keeps_own_and_shared_keys(self, codec):
        """Test that other integrations' lines are stripped"""
        content = (
            "# comment\nPORT=4000\nV8_USERNAME=u\nPRECENÇABANK_LOGIN=x\n"
            "HUBCREDITO_USR=y\nRANDOM=1\n\nNODE_ENV=production"
        )
        filtered = codec.filter(content, "v8")
        assert filtered == "# comment\nPORT=4000\nV8_USERNAME=u\n\nNODE_ENV=production"
    
    def test_shared_endpoints_kept_without_secrets(self, codec):
        """Test that shared V8 endpoints survive but V8 secrets do not"""
        content = "V8_API_URL=https://api\nV8_USERNAME=u\nV8_PASSWORD=p\nHUBCREDITO_PASS=s"
        assert codec.filter(content, "hubcredito") == "V8_API_URL=https://api\nHUBCREDITO_PASS=s"
    
    def test_drop_overrides_keep(self, synthetic_codec):
        """Test a line matching both lists is dropped"""
        content = "ALPHA_URL=x\nALPHA_SECRET=y\nPORT=1"
        assert synthetic_codec.filter(content, "alpha") == "ALPHA_URL=x\nPORT=1"
    
    def test_no_rules_returns_content(self, synthetic_codec):
        """Test integrations without rules are left unchanged"""
        content = "ANYTHING=1\nELSE=2"
        assert synthetic_codec.filter(content, "plain") == content
    
    def test_idempotent(self, codec):
        """Test filtering twice equals filtering once"""
        content = "# c\nPORT=1\nV8_X=1\n  HUBCREDITO_USR=2\njunk line\n\nV8_PASSWORD=3\n"
        for integration_id in DEFAULT_CATALOG.ids():
            once = codec.filter(content, integration_id)
            assert codec.filter(once, integration_id) == once
