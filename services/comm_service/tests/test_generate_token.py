from comm_service.core.config import Settings
from comm_service.core.security import TokenIssuer
from scripts.generate_token import DEFAULT_SCOPES, main


def printed_token(capsys) -> str:
    lines = capsys.readouterr().out.splitlines()
    return next(line.split("=", 1)[1] for line in lines if line.startswith("COMM_SERVICE_TOKEN="))


def test_token_for_named_service_and_scopes(monkeypatch, capsys):
    monkeypatch.setenv("JWT_SECRET_KEY", "cli-secret")

    main(["ai-service", "messages.send", "events.publish"])

    claims = TokenIssuer(Settings(_env_file=None)).verify(printed_token(capsys))
    assert claims["service"] == "ai-service"
    assert claims["scopes"] == ["messages.send", "events.publish"]


def test_defaults_and_lifetime_override(monkeypatch, capsys):
    monkeypatch.setenv("JWT_SECRET_KEY", "cli-secret")

    main(["--expire-minutes", "5"])

    out_token = printed_token(capsys)
    claims = TokenIssuer(Settings(_env_file=None)).verify(out_token)
    assert claims["service"] == "trading-service"
    assert claims["scopes"] == DEFAULT_SCOPES
    assert claims["exp"] - claims["iat"] == 300


def test_token_signed_with_another_secret_is_refused(monkeypatch, capsys):
    monkeypatch.setenv("JWT_SECRET_KEY", "cli-secret")
    main(["ai-service"])
    token = printed_token(capsys)

    monkeypatch.setenv("JWT_SECRET_KEY", "other-secret")
    assert TokenIssuer(Settings(_env_file=None)).verify(token) is None
