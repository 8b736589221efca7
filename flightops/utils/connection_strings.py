"""ADO.NET connection string helpers.

The backend stores SQL connection strings in the ADO.NET format used by
Entity Framework. The scripts need the same string for dotnet ef, a masked
copy for logs, and an ODBC form for SQLAlchemy verification queries.
"""

from typing import Dict, List, Optional, Tuple
from sqlalchemy.engine import URL

ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

KEY_ALIASES = {
    "server": "server",
    "data source": "server",
    "address": "server",
    "addr": "server",
    "network address": "server",
    "database": "database",
    "initial catalog": "database",
    "user id": "user",
    "uid": "user",
    "user": "user",
    "password": "password",
    "pwd": "password",
    "encrypt": "encrypt",
    "trustservercertificate": "trust_server_certificate",
    "connection timeout": "timeout",
    "connect timeout": "timeout",
    "authentication": "authentication",
}

SECRET_KEYS = {"password", "pwd"}

QUOTES = "\"'"

def split_connection_string(connection_string: str) -> List[Tuple[str, str]]:
    """Split a connection string into (key, value) pairs in order.

    Values may be wrapped in single or double quotes, inside which `;` is
    literal and a doubled quote stands for one quote character.
    """
    pairs: List[Tuple[str, str]] = []
    text = connection_string
    length = len(text)
    i = 0
    while i < length:
        if text[i] == ";" or text[i].isspace():
            i += 1
            continue

        equals = text.find("=", i)
        separator = text.find(";", i)
        if equals == -1 or (separator != -1 and separator < equals):
            raise ValueError("Malformed connection string: expected key=value segments")
        key = text[i:equals].strip()
        if not key:
            raise ValueError("Malformed connection string: empty key")

        i = equals + 1
        while i < length and text[i] in " \t":
            i += 1

        if i < length and text[i] in QUOTES:
            quote = text[i]
            i += 1
            chars = []
            while True:
                if i >= length:
                    raise ValueError(f"Malformed connection string: unterminated quote in {key}")
                if text[i] == quote:
                    if i + 1 < length and text[i + 1] == quote:
                        chars.append(quote)
                        i += 2
                        continue
                    i += 1
                    break
                chars.append(text[i])
                i += 1
            value = "".join(chars)
            while i < length and text[i].isspace():
                i += 1
            if i < length and text[i] != ";":
                raise ValueError(f"Malformed connection string: unexpected text after quoted {key}")
        else:
            end = text.find(";", i)
            if end == -1:
                end = length
            value = text[i:end].strip()
            i = end

        pairs.append((key, value))
    return pairs

def quote_value(value: str) -> str:
    """Quote a value when it would not survive an unquoted round trip."""
    if ";" in value or value.startswith(tuple(QUOTES)) or value != value.strip():
        return '"' + value.replace('"', '""') + '"'
    return value

def join_connection_string(pairs: List[Tuple[str, str]]) -> str:
    return ";".join(f"{key}={quote_value(value)}" for key, value in pairs)

def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """Split a connection string into normalised keys.

    Unknown keys are kept under their lower-cased name.
    """
    parts: Dict[str, str] = {}
    for key, value in split_connection_string(connection_string):
        key = key.lower()
        parts[KEY_ALIASES.get(key, key)] = value
    return parts

def split_server(server: str) -> Tuple[str, Optional[int]]:
    """Split `tcp:host,1433` into host and port."""
    if server.lower().startswith("tcp:"):
        server = server[4:]
    if "," in server:
        host, port = server.split(",", 1)
        return host.strip(), int(port)
    return server.strip(), None

def mask_connection_string(connection_string: str) -> str:
    """Replace password values for logging."""
    return join_connection_string([
        (key, "***" if key.lower() in SECRET_KEYS else value)
        for key, value in split_connection_string(connection_string)
    ])

def odbc_braced(value: str) -> str:
    """Wrap an ODBC attribute value in braces, doubling any closing brace."""
    return "{" + value.replace("}", "}}") + "}"

def to_odbc_connection_string(connection_string: str, driver: str = ODBC_DRIVER) -> str:
    parts = parse_connection_string(connection_string)
    host, port = split_server(parts["server"])
    server = f"tcp:{host},{port or 1433}"

    odbc = [
        f"Driver={odbc_braced(driver)}",
        f"Server={server}",
        f"Database={odbc_braced(parts['database'])}",
    ]
    if parts.get("user"):
        odbc.append(f"Uid={odbc_braced(parts['user'])}")
    if parts.get("password"):
        odbc.append(f"Pwd={odbc_braced(parts['password'])}")
    if parts.get("authentication"):
        odbc.append(f"Authentication={parts['authentication']}")
    odbc.append(f"Encrypt={_yes_no(parts.get('encrypt', 'yes'))}")
    odbc.append(f"TrustServerCertificate={_yes_no(parts.get('trust_server_certificate', 'no'))}")
    odbc.append(f"Connection Timeout={parts.get('timeout', '30')}")
    return ";".join(odbc) + ";"

def to_sqlalchemy_url(connection_string: str) -> URL:
    """Build a mssql+pyodbc URL from an ADO.NET connection string."""
    return URL.create(
        "mssql+pyodbc",
        query={"odbc_connect": to_odbc_connection_string(connection_string)}
    )

def with_database(connection_string: str, database: str) -> str:
    """Return the connection string pointing at another database."""
    pairs = split_connection_string(connection_string)
    replaced = False
    for index, (key, _) in enumerate(pairs):
        if KEY_ALIASES.get(key.lower()) == "database":
            pairs[index] = (key, database)
            replaced = True
    if not replaced:
        pairs.append(("Database", database))
    result = join_connection_string(pairs)
    if connection_string.rstrip().endswith(";"):
        result += ";"
    return result

def build_connection_string(server_fqdn: str, database: str, user: str, password: str) -> str:
    return join_connection_string([
        ("Server", f"tcp:{server_fqdn},1433"),
        ("Initial Catalog", database),
        ("User ID", user),
        ("Password", password),
        ("Encrypt", "True"),
        ("TrustServerCertificate", "False"),
        ("Connection Timeout", "30"),
    ]) + ";"

def _yes_no(value: str) -> str:
    return "yes" if str(value).strip().lower() in ("true", "yes", "1", "mandatory", "strict") else "no"
