import pytest

from flightops.utils.validators import validate_connection_string

from flightops.utils.connection_strings import (
    build_connection_string,
    mask_connection_string,
    split_connection_string,
    parse_connection_string,
    split_server,
    to_odbc_connection_string,
    to_sqlalchemy_url,
    with_database,
)

from conftest import CONNECTION_STRING

def test_parse_normalises_aliases():
    parts = parse_connection_string("Data Source=host;Initial Catalog=db;UID=admin;PWD=x;Foo=bar")

    assert parts == {
        "server": "host",
        "database": "db",
        "user": "admin",
        "password": "x",
        "foo": "bar",
    }

def test_parse_rejects_malformed():
    with pytest.raises(ValueError, match="Malformed"):
        parse_connection_string("Server=host;oops")

def test_split_server():
    assert split_server("tcp:sql.database.windows.net,1433") == ("sql.database.windows.net", 1433)
    assert split_server("localhost") == ("localhost", None)

def test_mask_connection_string():
    masked = mask_connection_string(CONNECTION_STRING)

    assert "S3cret!pass" not in masked
    assert "Password=***" in masked
    assert "User ID=flightcompanionadmin" in masked

def test_to_odbc_connection_string():
    odbc = to_odbc_connection_string(CONNECTION_STRING)

    assert odbc.startswith("Driver={ODBC Driver 18 for SQL Server};")
    assert "Server=tcp:sql-flightcompanion-dev-aue.database.windows.net,1433;" in odbc
    assert "Database={sqldb-flightcompanion-dev};" in odbc
    assert "Uid={flightcompanionadmin};" in odbc
    assert "Pwd={S3cret!pass};" in odbc
    assert "Encrypt=yes;" in odbc
    assert "TrustServerCertificate=no;" in odbc

def test_to_sqlalchemy_url():
    url = to_sqlalchemy_url(CONNECTION_STRING)

    assert url.drivername == "mssql+pyodbc"
    assert url.query["odbc_connect"] == to_odbc_connection_string(CONNECTION_STRING)

def test_with_database():
    restored = with_database(CONNECTION_STRING, "sqldb-flightcompanion-dev-drtest-1")
    assert "Initial Catalog=sqldb-flightcompanion-dev-drtest-1;" in restored
    assert "Initial Catalog=sqldb-flightcompanion-dev;" not in restored

    assert with_database("Server=x;User ID=u", "db") == "Server=x;User ID=u;Database=db"

def test_build_connection_string_round_trips():
    value = build_connection_string("server.database.windows.net", "db", "admin", "pw")
    parts = parse_connection_string(value)

    assert parts["server"] == "tcp:server.database.windows.net,1433"
    assert parts["database"] == "db"
    assert parts["password"] == "pw"

QUOTED = 'Server=tcp:sql.database.windows.net,1433;Database=db;User ID=admin;Password="a;b}c";Encrypt=True;'

def test_quoted_value_keeps_semicolons():
    assert validate_connection_string(QUOTED) == (True, None)
    assert parse_connection_string(QUOTED)["password"] == "a;b}c"
    assert parse_connection_string("Server=x;Database=db;Password='it''s'")["password"] == "it's"
    assert parse_connection_string('Server=x;Database=db;Password=" p""w "')["password"] == ' p"w '

def test_unterminated_quote_is_malformed():
    with pytest.raises(ValueError, match="unterminated quote in Password"):
        parse_connection_string('Server=x;Password="abc')
    assert not validate_connection_string('Server=x;Database=db;Password="ab"c')[0]

def test_odbc_escapes_closing_braces():
    assert "Pwd={a;b}}c};" in to_odbc_connection_string(QUOTED)
    odbc = to_odbc_connection_string("Server=x;Database=db;User ID=u;Password=ab}c")
    assert "Pwd={ab}}c};" in odbc

def test_mask_handles_quoted_password():
    masked = mask_connection_string(QUOTED)

    assert "b}c" not in masked
    assert "Password=***;Encrypt=True" in masked

def test_values_needing_quotes_survive_rebuilding():
    value = build_connection_string("server.database.windows.net", "db", "admin", "p;w'd")
    assert parse_connection_string(value)["password"] == "p;w'd"

    moved = with_database(QUOTED, "db-restored")
    assert split_connection_string(moved)[3] == ("Password", "a;b}c")
    assert parse_connection_string(moved)["database"] == "db-restored"
