"""Builders that turn command arguments into chain actions.

Each builder validates its inputs locally and raises
:class:`~evtc.model.ValidationError` before any service is contacted.
Permission and group definitions can be given inline as JSON or as a path
to a JSON file; see :func:`json_from_file_or_string`.
"""

from __future__ import annotations

import json
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .model import Action, ValidationError, validate_name

DEFAULT_PERMISSION = "default"
OWNER_GROUP_REF = "[G] .OWNER"
ASSET_SYMBOL = "EVT"
ASSET_PRECISION = 5

_BASE58 = "1-9A-HJ-NP-Za-km-z"
_PUBLIC_KEY_PATTERN = re.compile(rf"^EVT[{_BASE58}]{{50}}$")
_WIF_PATTERN = re.compile(rf"^5[{_BASE58}]{{50}}$")
_JSON_TEXT_PATTERN = re.compile(r"^[ \t]*[{\[]")
_ASSET_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s+([A-Z]{1,7})\s*$")


def _is_regular_file(path: Path) -> bool:
    # inline JSON can exceed the OS name limit or hold NUL bytes
    try:
        return path.is_file()
    except (OSError, ValueError):
        return False


def json_from_file_or_string(value: str) -> Any:
    """Parse *value* as JSON text or as the path of a JSON file.

    Text that opens with ``{`` or ``[`` (after spaces or tabs) is always
    treated as inline JSON, even if a file of that name exists. Anything else
    is read from disk when it names a regular file, and parsed as inline JSON
    otherwise.
    """

    if not _JSON_TEXT_PATTERN.match(value):
        path = Path(value).expanduser()
        if _is_regular_file(path):
            try:
                return json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as exc:
                raise ValidationError(f"Failed to parse JSON file {path}: {exc}") from exc
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Failed to parse JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})") from exc


def validate_public_key(value: str) -> str:
    if not isinstance(value, str) or not _PUBLIC_KEY_PATTERN.match(value.strip()):
        raise ValidationError(f"Invalid public key: {value}")
    return value.strip()


def validate_private_key(value: str) -> str:
    """Check that *value* looks like a WIF private key; the wallet verifies the checksum."""

    if not isinstance(value, str) or not _WIF_PATTERN.match(value.strip()):
        # never echo the key back
        raise ValidationError("Invalid private key: expected a WIF encoded key")
    return value.strip()


def parse_asset(value: str) -> str:
    """Normalise an amount such as ``12.5 EVT`` to ``12.50000 EVT``."""

    match = _ASSET_PATTERN.match(value or "")
    if not match:
        raise ValidationError(f"Invalid asset '{value}': expected e.g. '12.50000 {ASSET_SYMBOL}'")
    amount_text, symbol = match.groups()
    if symbol != ASSET_SYMBOL:
        raise ValidationError(f"Unsupported asset symbol '{symbol}': only {ASSET_SYMBOL} can be transferred")
    try:
        amount = Decimal(amount_text)
    except InvalidOperation as exc:  # pragma: no cover - regex guarantees digits
        raise ValidationError(f"Invalid asset amount: {amount_text}") from exc
    if amount <= 0:
        raise ValidationError(f"Asset amount must be positive: {value}")
    if amount.as_tuple().exponent < -ASSET_PRECISION:
        raise ValidationError(f"Asset amount supports at most {ASSET_PRECISION} decimals: {value}")
    return f"{amount:.{ASSET_PRECISION}f} {symbol}"


def default_permission(name: str, public_key: str | None) -> Dict[str, Any]:
    """Threshold-1 permission held by *public_key*, or by the token owners when omitted."""

    ref = f"[A] {public_key}" if public_key else OWNER_GROUP_REF
    return {"name": name, "threshold": 1, "authorizers": [{"ref": ref, "weight": 1}]}


def _check_permission(permission: Any, name: str) -> Dict[str, Any]:
    if not isinstance(permission, dict):
        raise ValidationError(f"{name.upper()} permission must be a JSON object")
    threshold = permission.get("threshold")
    authorizers = permission.get("authorizers")
    if not isinstance(threshold, int) or threshold < 0:
        raise ValidationError(f"{name.upper()} permission needs a non-negative integer threshold")
    if not isinstance(authorizers, list):
        raise ValidationError(f"{name.upper()} permission needs an 'authorizers' list")
    for entry in authorizers:
        if not isinstance(entry, dict) or "ref" not in entry or not isinstance(entry.get("weight"), int):
            raise ValidationError(f"{name.upper()} permission authorizers need 'ref' and integer 'weight'")
    permission.setdefault("name", name)
    return permission


def parse_permission(json_or_file: str, name: str) -> Dict[str, Any]:
    try:
        return _check_permission(json_or_file_to_object(json_or_file), name)
    except ValidationError as exc:
        raise ValidationError(f"Fail to parse Permission JSON: {exc}") from exc


def parse_group(json_or_file: str) -> Dict[str, Any]:
    try:
        group = json_or_file_to_object(json_or_file)
        if not isinstance(group.get("root"), dict):
            raise ValidationError("group needs a 'root' node")
        validate_name(str(group.get("name", "")), field_name="group name")
        if "key" in group:
            validate_public_key(group["key"])
    except ValidationError as exc:
        raise ValidationError(f"Fail to parse Group JSON: {exc}") from exc
    return group


def json_or_file_to_object(json_or_file: str) -> Dict[str, Any]:
    parsed = json_from_file_or_string(json_or_file)
    if not isinstance(parsed, dict):
        raise ValidationError("expected a JSON object")
    return parsed


def _public_keys(values: Iterable[str]) -> List[str]:
    keys = [validate_public_key(value) for value in values]
    if not keys:
        raise ValidationError("At least one public key is required")
    return keys


def _permission_or_default(value: str, name: str, public_key: str | None) -> Dict[str, Any]:
    if value == DEFAULT_PERMISSION:
        return default_permission(name, public_key)
    return parse_permission(value, name)


def new_domain(
    name: str,
    issuer: str,
    issue: str = DEFAULT_PERMISSION,
    transfer: str = DEFAULT_PERMISSION,
    manage: str = DEFAULT_PERMISSION,
) -> Action:
    validate_name(name, field_name="domain name")
    issuer = validate_public_key(issuer)
    data = {
        "name": name,
        "issuer": issuer,
        "issue": _permission_or_default(issue, "issue", issuer),
        "transfer": _permission_or_default(transfer, "transfer", None),
        "manage": _permission_or_default(manage, "manage", issuer),
    }
    return Action(domain="domain", key=name, data=data, name="newdomain")


def update_domain(
    name: str,
    issue: str | None = None,
    transfer: str | None = None,
    manage: str | None = None,
) -> Action:
    validate_name(name, field_name="domain name")
    data: Dict[str, Any] = {"name": name}
    for perm_name, value in (("issue", issue), ("transfer", transfer), ("manage", manage)):
        if value is not None and value != DEFAULT_PERMISSION:
            data[perm_name] = parse_permission(value, perm_name)
    return Action(domain="domain", key=name, data=data, name="updatedomain")


def issue_tokens(domain: str, names: Iterable[str], owner: Iterable[str]) -> Action:
    validate_name(domain, field_name="domain name")
    token_names = [validate_name(item, field_name="token name") for item in names]
    if not token_names:
        raise ValidationError("At least one token name is required")
    data = {"domain": domain, "names": token_names, "owner": _public_keys(owner)}
    return Action(domain=domain, key="issue", data=data, name="issuetoken")


def transfer_token(domain: str, name: str, to: Iterable[str]) -> Action:
    validate_name(domain, field_name="domain name")
    validate_name(name, field_name="token name")
    data = {"domain": domain, "name": name, "to": _public_keys(to)}
    return Action(domain=domain, key=name, data=data, name="transfer")


def new_group(group_json: str) -> Action:
    group = parse_group(group_json)
    return Action(domain="group", key=group["name"], data={"name": group["name"], "group": group}, name="newgroup")


def update_group(name: str, group_json: str) -> Action:
    validate_name(name, field_name="group name")
    group = parse_group(group_json)
    if group["name"] != name:
        raise ValidationError(f"Group JSON names '{group['name']}' but '{name}' is being updated")
    return Action(domain="group", key=name, data={"name": name, "group": group}, name="updategroup")


def new_account(name: str, owner: Iterable[str]) -> Action:
    validate_name(name, field_name="account name")
    return Action(domain="account", key=name, data={"name": name, "owner": _public_keys(owner)}, name="newaccount")


def transfer_evt(sender: str, receiver: str, amount: str) -> Action:
    validate_name(sender, field_name="account name")
    validate_name(receiver, field_name="account name")
    data = {"from": sender, "to": receiver, "amount": parse_asset(amount)}
    return Action(domain="account", key=sender, data=data, name="transferevt")


def update_owner(name: str, owner: Iterable[str]) -> Action:
    validate_name(name, field_name="account name")
    return Action(domain="account", key=name, data={"name": name, "owner": _public_keys(owner)}, name="updateowner")
