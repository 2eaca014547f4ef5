"""
Integration tests for the Environment Administration API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from env_admin.api import create_app, status_for
from env_admin.api.auth import AdminSystem, get_admin_system
from env_admin.batch import LookupClient, LookupResult
from env_admin.config import AdminConfig
from env_admin.exceptions import (
    AuthenticationError, ConflictError, FilesystemError, ForbiddenError, NotFoundError,
    StorageIOError, ValidationError, VerificationFailedError
)
from env_admin.storage import InMemoryDocumentStore
from env_admin.verification import MockCredentialVerifier


class RecordingLookupClient(LookupClient):
    """Accepts every lookup and remembers where it was routed"""
    
    def __init__(self):
        self.targets = []
    
    async def simulate(self, integration_id, subject, target):
        self.targets.append((integration_id, target.port, target.environment_id))
        return LookupResult(integration_id, True, data={"cpf": subject.cpf})


@pytest.fixture
def base_path(tmp_path):
    template = tmp_path / "rota-4000.teste"
    (template / "V8").mkdir(parents=True)
    (template / "V8" / "index.js").write_text("// v8\n")
    (template / "hubcredito").mkdir()
    (template / "hubcredito" / "index.js").write_text("// hub\n")
    return tmp_path


@pytest.fixture
def system(base_path):
    config = AdminConfig(base_path=str(base_path), jwt_secret="test-secret-key-for-the-api-test-suite", auth_enabled=True)
    return AdminSystem(
        config=config,
        document_store=InMemoryDocumentStore(),
        verifier=MockCredentialVerifier(accepted_passwords=["valid"]),
        lookup_client=RecordingLookupClient()
    )


@pytest.fixture
def client(system):
    """Create a test client bound to an isolated system"""
    app = create_app()
    app.dependency_overrides[get_admin_system] = lambda: system
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(client):
    r = client.post("/api/admin/login", json={"username": "admin", "password": "admin123"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
def environment(client, admin_headers):
    r = client.post("/api/admin/environments", headers=admin_headers, json={
        "name": "QA",
        "port": 5005,
        "username": "owner",
        "password": "pw",
        "integrations": ["v8"]
    })
    assert r.status_code == 201
    return r.json()["ambiente"]


def make_login(client, admin_headers, environment_id, permissions, username="maria"):
    """Create a profile and a login bound to it; return the login's auth headers"""
    r = client.post("/api/admin/profiles", headers=admin_headers,
                    json={"name": f"Perfil {username}", "permissions": permissions})
    assert r.status_code == 201
    profile_id = r.json()["perfil"]["id"]
    r = client.post("/api/admin/logins", headers=admin_headers, json={
        "username": username,
        "password": "secret",
        "environment_id": environment_id,
        "profile_id": profile_id
    })
    assert r.status_code == 201
    r = client.post("/api/admin/login", json={"username": username, "password": "secret"})
    assert r.status_code == 200
    assert r.json()["tipo"] == "login"
    return {"Authorization": f"Bearer {r.json()['token']}"}


class TestErrorMapping:
    """Test error classes map to HTTP status codes"""
    
    @pytest.mark.parametrize("error,expected", [
        (NotFoundError("x"), 404),
        (ConflictError("x"), 409),
        (ForbiddenError("x"), 403),
        (ValidationError("x"), 400),
        (StorageIOError("x"), 500),
        (FilesystemError("x"), 500),
        (VerificationFailedError("x"), 400),
        (AuthenticationError("x"), 401),
    ])
    def test_status_for(self, error, expected):
        assert status_for(error) == expected


class TestHealthAndAuth:
    """Test health and sign-in endpoints"""
    
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"
    
    def test_admin_login(self, client):
        r = client.post("/api/admin/login", json={"username": "admin", "password": "admin123"})
        data = r.json()
        assert data["tipo"] == "admin"
        assert data["usuario"]["username"] == "admin"
    
    def test_wrong_password(self, client):
        """Test a failed sign-in returns 401 with the failure code"""
        r = client.post("/api/admin/login", json={"username": "admin", "password": "nope"})
        assert r.status_code == 401
        assert r.json() == {"success": False, "error": "Incorrect password", "errorCode": "INVALID_PASSWORD"}
    
    def test_unknown_user(self, client):
        r = client.post("/api/admin/login", json={"username": "ghost", "password": "x"})
        assert r.status_code == 401
        assert r.json()["errorCode"] == "USER_NOT_FOUND"
    
    def test_missing_token(self, client):
        r = client.get("/api/admin/environments")
        assert r.status_code == 401
        assert r.json()["errorCode"] == "NOT_AUTHENTICATED"
    
    def test_invalid_token(self, client):
        r = client.get("/api/admin/environments", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401
        assert r.json()["errorCode"] == "INVALID_TOKEN"
    
    def test_validate_token(self, client, admin_headers):
        r = client.post("/api/admin/validate-token", headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["tipo"] == "admin"
    
    def test_auth_disabled(self, base_path):
        """Test every request runs as an administrator when auth is off"""
        system = AdminSystem(
            config=AdminConfig(base_path=str(base_path), auth_enabled=False),
            document_store=InMemoryDocumentStore(),
            verifier=None,
            lookup_client=RecordingLookupClient()
        )
        app = create_app()
        app.dependency_overrides[get_admin_system] = lambda: system
        r = TestClient(app).get("/api/admin/environments")
        assert r.status_code == 200
        assert r.json()["ambientes"] == []


class TestEnvironmentEndpoints:
    """Test environment management as an administrator"""
    
    def test_create_materializes(self, environment, base_path):
        assert environment["porta"] == 5005
        assert "passwordHash" not in environment
        assert (base_path / "rota-5005.producao" / "V8" / "index.js").is_file()
    
    def test_duplicate_port(self, client, admin_headers, environment):
        r = client.post("/api/admin/environments", headers=admin_headers, json={
            "name": "Other", "port": 5005, "username": "o", "password": "p"
        })
        assert r.status_code == 409
        assert r.json()["errorCode"] == "PORT_IN_USE"
    
    def test_invalid_port(self, client, admin_headers):
        r = client.post("/api/admin/environments", headers=admin_headers, json={
            "name": "Low", "port": 22, "username": "o", "password": "p"
        })
        assert r.status_code == 400
        assert r.json()["errorCode"] == "INVALID_PORT"
    
    def test_get_and_update(self, client, admin_headers, environment):
        env_id = environment["id"]
        r = client.put(f"/api/admin/environments/{env_id}", headers=admin_headers,
                       json={"name": "Staging", "pipeline_ref": "pipe-1"})
        assert r.status_code == 200
        
        r = client.get(f"/api/admin/environments/{env_id}", headers=admin_headers)
        assert r.json()["ambiente"]["nome"] == "Staging"
        assert r.json()["ambiente"]["pipelineKentro"] == "pipe-1"
    
    def test_unknown_environment(self, client, admin_headers):
        r = client.get("/api/admin/environments/ambiente-missing", headers=admin_headers)
        assert r.status_code == 404
    
    def test_set_integrations_and_sync(self, client, admin_headers, environment, base_path):
        env_id = environment["id"]
        r = client.put(f"/api/admin/environments/{env_id}/integrations", headers=admin_headers,
                       json={"integrations": ["v8", "hubcredito"]})
        assert r.status_code == 200
        assert r.json()["bancosPermitidos"] == ["v8", "hubcredito"]
        assert (base_path / "rota-5005.producao" / "hubcredito" / "index.js").is_file()
        
        r = client.post(f"/api/admin/environments/{env_id}/integrations/hubcredito/sync",
                        headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["success"] is True
    
    def test_sync_unpermitted(self, client, admin_headers, environment):
        r = client.post(f"/api/admin/environments/{environment['id']}/integrations/hubcredito/sync",
                        headers=admin_headers)
        assert r.status_code == 403
        assert r.json()["errorCode"] == "INTEGRATION_NOT_PERMITTED"
    
    def test_reconcile(self, client, admin_headers, base_path):
        (base_path / "rota-6000.producao").mkdir()
        r = client.post("/api/admin/reconcile", headers=admin_headers)
        assert r.status_code == 200
        assert [e["porta"] for e in r.json()["criados"]] == [6000]
    
    def test_credentials_roundtrip(self, client, admin_headers, environment):
        """Test verified credentials are written and read back"""
        url = f"/api/admin/environments/{environment['id']}/integrations/v8/credentials"
        r = client.put(url, headers=admin_headers, json={"login": "user", "password": "valid"})
        assert r.status_code == 200
        assert r.json()["validacao"]["success"] is True
        
        r = client.get(url, headers=admin_headers)
        assert r.json()["credenciais"] == {"login": "user", "password": "valid"}
    
    def test_rejected_credentials(self, client, admin_headers, environment):
        url = f"/api/admin/environments/{environment['id']}/integrations/v8/credentials"
        r = client.put(url, headers=admin_headers, json={"login": "user", "password": "bad"})
        assert r.status_code == 400
        assert r.json()["errorCode"] == "VERIFICATION_FAILED"
    
    def test_unreadable_credential_file(self, client, admin_headers, environment, base_path):
        """Test a corrupt credential file returns an error body, not a bare 500"""
        (base_path / "rota-5005.producao" / ".env").write_bytes(b"PORT=5005\nV8_PASS=\xff\xfe\n")
        url = f"/api/admin/environments/{environment['id']}/integrations/v8/credentials"
        
        r = client.get(url, headers=admin_headers)
        
        assert r.status_code == 500
        assert r.json()["success"] is False
        assert r.json()["errorCode"] == "ENV_FILE_ERROR"
        
    def test_delete(self, client, admin_headers, environment, base_path):
        r = client.delete(f"/api/admin/environments/{environment['id']}", headers=admin_headers)
        assert r.status_code == 200
        assert not (base_path / "rota-5005.producao").exists()


class TestLoginAccess:
    """Test profile-gated access for environment logins"""
    
    def test_login_sees_only_own_environment(self, client, admin_headers, environment):
        client.post("/api/admin/environments", headers=admin_headers, json={
            "name": "Other", "port": 5006, "username": "o", "password": "p"
        })
        headers = make_login(client, admin_headers, environment["id"], {"ambientes_visualizar": True})
        
        r = client.get("/api/admin/environments", headers=headers)
        assert [e["id"] for e in r.json()["ambientes"]] == [environment["id"]]
    
    def test_missing_permission(self, client, admin_headers, environment):
        headers = make_login(client, admin_headers, environment["id"], {"ambientes_visualizar": True})
        r = client.post(f"/api/admin/environments/{environment['id']}/sync", headers=headers)
        assert r.status_code == 403
        assert r.json()["errorCode"] == "INSUFFICIENT_PERMISSIONS"
    
    def test_admin_only_endpoint(self, client, admin_headers, environment):
        headers = make_login(client, admin_headers, environment["id"], {"ambientes_sincronizar": True})
        r = client.post("/api/admin/reconcile", headers=headers)
        assert r.status_code == 403
        assert r.json()["errorCode"] == "ADMIN_REQUIRED"
    
    def test_other_environment_forbidden(self, client, admin_headers, environment):
        r = client.post("/api/admin/environments", headers=admin_headers, json={
            "name": "Other", "port": 5006, "username": "o", "password": "p"
        })
        other_id = r.json()["ambiente"]["id"]
        headers = make_login(client, admin_headers, environment["id"], {"ambientes_visualizar": True})
        
        r = client.get(f"/api/admin/environments/{other_id}", headers=headers)
        assert r.status_code == 403
        assert r.json()["errorCode"] == "ENVIRONMENT_FORBIDDEN"
    
    def test_inactive_environment_blocks_login(self, client, admin_headers, environment):
        make_login(client, admin_headers, environment["id"], {})
        client.put(f"/api/admin/environments/{environment['id']}", headers=admin_headers,
                   json={"active": False})
        r = client.post("/api/admin/login", json={"username": "maria", "password": "secret"})
        assert r.status_code == 401
        assert r.json()["errorCode"] == "AMBIENTE_INACTIVE"
    
    def test_deactivated_login_token_rejected(self, client, admin_headers, environment):
        """Test a token stops working once its login is deactivated"""
        headers = make_login(client, admin_headers, environment["id"], {"ambientes_visualizar": True})
        login_id = client.get("/api/admin/logins", headers=admin_headers).json()["logins"][0]["id"]
        client.put(f"/api/admin/logins/{login_id}", headers=admin_headers, json={"active": False})
        
        r = client.get("/api/admin/environments", headers=headers)
        assert r.status_code == 401
        assert r.json()["errorCode"] == "USER_INACTIVE"
    
    def test_token_rejected_after_environment_deactivated(self, client, admin_headers, environment):
        """Test a login token stops working once its environment is deactivated"""
        headers = make_login(client, admin_headers, environment["id"], {"ambientes_visualizar": True})
        assert client.get("/api/admin/environments", headers=headers).status_code == 200
        client.put(f"/api/admin/environments/{environment['id']}", headers=admin_headers,
                   json={"active": False})
        
        r = client.get("/api/admin/environments", headers=headers)
        assert r.status_code == 401
        assert r.json()["errorCode"] == "AMBIENTE_INACTIVE"
    
    def test_token_rejected_after_environment_deleted(self, client, admin_headers, environment):
        headers = make_login(client, admin_headers, environment["id"], {"ambientes_visualizar": True})
        client.delete(f"/api/admin/environments/{environment['id']}", headers=admin_headers)
        
        r = client.get("/api/admin/environments", headers=headers)
        assert r.status_code == 401
        assert r.json()["errorCode"] == "AMBIENTE_NOT_FOUND"
    
    def test_unknown_permission(self, client, admin_headers):
        r = client.post("/api/admin/profiles", headers=admin_headers,
                        json={"name": "Bad", "permissions": {"everything": True}})
        assert r.status_code == 400
        assert r.json()["errorCode"] == "UNKNOWN_PERMISSION"


class TestPortal:
    """Test environment self-service with header credentials"""
    
    def _headers(self, environment, password="pw"):
        return {"X-Environment-Id": environment["id"], "X-Username": "owner", "X-Password": password}
    
    def test_login(self, client, environment):
        r = client.post("/api/environment/login", json={
            "environment_id": environment["id"], "username": "owner", "password": "pw"
        })
        assert r.status_code == 200
        assert r.json()["ambiente"]["id"] == environment["id"]
    
    def test_integrations(self, client, environment):
        r = client.get("/api/environment/integrations", headers=self._headers(environment))
        assert r.json()["bancos"] == [{"id": "v8", "nome": "V8 Digital"}]
    
    def test_wrong_password(self, client, environment):
        r = client.get("/api/environment/integrations", headers=self._headers(environment, "bad"))
        assert r.status_code == 401
        assert r.json()["errorCode"] == "INVALID_PASSWORD"
    
    def test_missing_headers(self, client):
        r = client.get("/api/environment/integrations")
        assert r.status_code == 401
    
    def test_update_own_credentials(self, client, environment):
        r = client.put("/api/environment/integrations/v8/credentials", headers=self._headers(environment),
                       json={"password": "valid", "verify": False})
        assert r.status_code == 200
        r = client.get("/api/environment/integrations/v8/credentials", headers=self._headers(environment))
        assert r.json()["credenciais"] == {"password": "valid"}
    
    def test_unpermitted_integration(self, client, environment):
        r = client.get("/api/environment/integrations/hubcredito/credentials",
                       headers=self._headers(environment))
        assert r.status_code == 403


class TestLookups:
    """Test CLT simulation and batch endpoints"""
    
    SUBJECT = {"cpf": "123.456.789-09", "telefone": "11 99999-0000", "dataNascimento": "1990-01-01"}
    
    def test_admin_simulation_uses_template_port(self, client, admin_headers, system):
        r = client.post("/api/admin/clt/simulate", headers=admin_headers,
                        json={**self.SUBJECT, "integrations": ["v8"]})
        assert r.status_code == 200
        assert r.json()["resultados"]["v8"]["success"] is True
        assert system.batch_processor.client.targets == [("v8", 4000, "temp-4000")]
    
    def test_login_simulation_uses_own_environment(self, client, admin_headers, environment, system):
        headers = make_login(client, admin_headers, environment["id"], {"clt_consulta": True})
        r = client.post("/api/admin/clt/simulate", headers=headers,
                        json={**self.SUBJECT, "integrations": ["v8"]})
        assert r.status_code == 200
        assert system.batch_processor.client.targets == [("v8", 5005, environment["id"])]
    
    def test_batch(self, client, admin_headers):
        """Test a batch is processed and its status can be polled"""
        records = [dict(self.SUBJECT, cpf=str(i)) for i in range(12)]
        r = client.post("/api/admin/clt/batch", headers=admin_headers,
                        json={"records": records, "integrations": ["v8"]})
        assert r.status_code == 200
        job_id = r.json()["loteId"]
        
        r = client.get(f"/api/admin/clt/batch/{job_id}", headers=admin_headers)
        batch = r.json()["lote"]
        assert batch["status"] == "done"
        assert batch["progresso"]["processados"] == 12
        assert batch["progresso"]["sucesso"] == 12
    
    def test_unknown_batch(self, client, admin_headers):
        r = client.get("/api/admin/clt/batch/lote-missing", headers=admin_headers)
        assert r.status_code == 404
    
    def test_batch_requires_permission(self, client, admin_headers, environment):
        headers = make_login(client, admin_headers, environment["id"], {"clt_consulta": True})
        r = client.post("/api/admin/clt/batch", headers=headers,
                        json={"records": [self.SUBJECT], "integrations": ["v8"]})
        assert r.status_code == 403
