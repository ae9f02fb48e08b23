"""Command line interface for the evtc chain client."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from typing import Any, Callable, Dict, Sequence

from . import __version__
from .actions import (
    DEFAULT_PERMISSION,
    issue_tokens,
    json_from_file_or_string,
    new_account,
    new_domain,
    new_group,
    transfer_evt,
    transfer_token,
    update_domain,
    update_group,
    update_owner,
    validate_private_key,
)
from .config import ConfigurationError, load_client_config
from .diagnostics import describe_error
from .model import Action, CompressionType, ValidationError
from .rpc_client import ChainAPI, RPCConnectionError, RPCError, RPCTransportError, WalletAPI
from .tx_builder import TransactionError, TransactionOptions, TransactionPipeline

logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _add_transaction_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-x",
        "--expiration",
        type=float,
        default=None,
        help="Seconds before the transaction expires (default: 30)",
    )
    parser.add_argument(
        "-s",
        "--skip-sign",
        action="store_true",
        help="Do not sign the transaction with unlocked wallet keys",
    )
    parser.add_argument(
        "-d",
        "--dont-broadcast",
        action="store_true",
        help="Don't broadcast the transaction (just print it to stdout)",
    )
    parser.add_argument(
        "-r",
        "--ref-block",
        default=None,
        help="Reference block num or id used for TAPOS (Transaction as Proof-of-Stake)",
    )
    parser.add_argument(
        "-c",
        "--compression",
        choices=[item.value for item in CompressionType],
        default=CompressionType.NONE.value,
        help="Compression applied to the packed transaction (default: %(default)s)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="evtc", description="Command line interface to the evt chain")
    parser.add_argument("-u", "--url", default=None, help="HTTP/HTTPS URL where evtd is running")
    parser.add_argument("--wallet-url", default=None, help="HTTP/HTTPS URL where evtwd is running")
    parser.add_argument("--config", default=None, help="YAML config file (default: ~/.evtc.yaml)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Output verbose details on error")
    subparsers = parser.add_subparsers(dest="command", required=True)

    version = subparsers.add_parser("version", help="Retrieve version information")
    version_sub = version.add_subparsers(dest="subcommand", required=True)
    version_sub.add_parser("client", help="Retrieve version information of the client")

    get = subparsers.add_parser("get", help="Retrieve various items and information from the blockchain")
    get_sub = get.add_subparsers(dest="subcommand", required=True)
    get_sub.add_parser("info", help="Get current blockchain information")
    get_block = get_sub.add_parser("block", help="Retrieve a full block from the blockchain")
    get_block.add_argument("block", help="The number or ID of the block to retrieve")
    get_trx = get_sub.add_parser("transaction", help="Retrieve a transaction from the blockchain")
    get_trx.add_argument("id", help="ID of the transaction to retrieve")
    get_trxs = get_sub.add_parser(
        "transactions", help="Retrieve transactions that reference a specific account"
    )
    get_trxs.add_argument("account_name", help="Name of account to query on")
    get_trxs.add_argument("skip_seq", nargs="?", type=int, help="Number of most recent transactions to skip")
    get_trxs.add_argument("num_seq", nargs="?", type=int, help="Number of transactions to return")
    get_domain = get_sub.add_parser("domain", help="Retrieve a domain information")
    get_domain.add_argument("name", help="Name of domain to be retrieved")
    get_token = get_sub.add_parser("token", help="Retrieve a token information")
    get_token.add_argument("domain", help="Domain name of token to be retrieved")
    get_token.add_argument("name", help="Name of token to be retrieved")
    get_group = get_sub.add_parser("group", help="Retrieve a permission group information")
    get_group.add_argument("name", help="Name of group to be retrieved")
    get_account = get_sub.add_parser("account", help="Retrieve an account information")
    get_account.add_argument("name", help="Name of account to be retrieved")

    net = subparsers.add_parser("net", help="Interact with local p2p network connections")
    net_sub = net.add_subparsers(dest="subcommand", required=True)
    for name, help_text in (
        ("connect", "Start a new connection to a peer"),
        ("disconnect", "Close an existing connection"),
        ("status", "Status of existing connection"),
    ):
        net_cmd = net_sub.add_parser(name, help=help_text)
        net_cmd.add_argument("host", help="The hostname:port of the peer")
    net_sub.add_parser("peers", help="Status of all existing peers")

    domain = subparsers.add_parser("domain", help="Create or update a domain")
    domain_sub = domain.add_subparsers(dest="subcommand", required=True)
    domain_create = domain_sub.add_parser("create", help="Create new domain")
    domain_create.add_argument("name", help="The name of new domain")
    domain_create.add_argument("issuer", help="The public key of the issuer")
    for perm in ("issue", "transfer", "manage"):
        domain_create.add_argument(
            perm,
            nargs="?",
            default=DEFAULT_PERMISSION,
            help=f"JSON string or filename defining {perm.upper()} permission (default: %(default)s)",
        )
    _add_transaction_options(domain_create)
    domain_update = domain_sub.add_parser("update", help="Update existing domain")
    domain_update.add_argument("name", help="The name of the domain")
    domain_update.add_argument("-i", "--issue", default=None, help="JSON string or filename defining ISSUE permission")
    domain_update.add_argument("-t", "--transfer", default=None, help="JSON string or filename defining TRANSFER permission")
    domain_update.add_argument("-m", "--manage", default=None, help="JSON string or filename defining MANAGE permission")
    _add_transaction_options(domain_update)

    token = subparsers.add_parser("token", help="Issue or transfer tokens")
    token_sub = token.add_subparsers(dest="subcommand", required=True)
    token_issue = token_sub.add_parser("issue", help="Issue new tokens in specific domain")
    token_issue.add_argument("domain", help="Name of the domain where token issued")
    token_issue.add_argument("-n", "--names", nargs="+", required=True, help="Names of tokens will be issued")
    token_issue.add_argument("owner", nargs="+", help="Owner that issued tokens belongs to")
    _add_transaction_options(token_issue)
    token_transfer = token_sub.add_parser("transfer", help="Transfer token")
    token_transfer.add_argument("domain", help="Name of the domain where token existed")
    token_transfer.add_argument("name", help="Name of the token to be transferred")
    token_transfer.add_argument("to", nargs="+", help="Public keys that receive this token")
    _add_transaction_options(token_transfer)

    group = subparsers.add_parser("group", help="Create or update permission groups")
    group_sub = group.add_subparsers(dest="subcommand", required=True)
    group_create = group_sub.add_parser("create", help="Create new group")
    group_create.add_argument("json", help="JSON string or filename defining the group to be created")
    _add_transaction_options(group_create)
    group_update = group_sub.add_parser("update", help="Update specific permission group")
    group_update.add_argument("name", help="Name of the permission group to be updated")
    group_update.add_argument("json", help="JSON string or filename defining the updated group")
    _add_transaction_options(group_update)

    account = subparsers.add_parser("account", help="Create or update accounts and transfer EVT between accounts")
    account_sub = account.add_subparsers(dest="subcommand", required=True)
    account_create = account_sub.add_parser("create", help="Create new account")
    account_create.add_argument("name", help="Name of new account")
    account_create.add_argument("owner", nargs="+", help="Owner that new account belongs to")
    _add_transaction_options(account_create)
    account_transfer = account_sub.add_parser("transfer", help="Transfer EVT between accounts")
    account_transfer.add_argument("sender", metavar="from", help="Name of account EVT from")
    account_transfer.add_argument("receiver", metavar="to", help="Name of account EVT to")
    account_transfer.add_argument("amount", help="Total EVT transferred, e.g. '1.00000 EVT'")
    _add_transaction_options(account_transfer)
    account_update = account_sub.add_parser("update", help="Update owner for specific account")
    account_update.add_argument("name", help="Name of updated account")
    account_update.add_argument("owner", nargs="+", help="Updated owner for account")
    _add_transaction_options(account_update)

    wallet = subparsers.add_parser("wallet", help="Interact with local wallet")
    wallet_sub = wallet.add_subparsers(dest="subcommand", required=True)
    for name, help_text in (
        ("create", "Create a new wallet locally"),
        ("open", "Open an existing wallet"),
        ("lock", "Lock wallet"),
    ):
        wallet_cmd = wallet_sub.add_parser(name, help=help_text)
        wallet_cmd.add_argument("-n", "--name", default="default", help="The name of the wallet (default: %(default)s)")
    wallet_sub.add_parser("lock_all", help="Lock all unlocked wallets")
    wallet_unlock = wallet_sub.add_parser("unlock", help="Unlock wallet")
    wallet_unlock.add_argument("-n", "--name", default="default", help="The name of the wallet to unlock")
    wallet_unlock.add_argument("--password", default=None, help="The password returned by wallet create")
    wallet_import = wallet_sub.add_parser("import", help="Import private key into wallet")
    wallet_import.add_argument("-n", "--name", default="default", help="The name of the wallet to import key into")
    wallet_import.add_argument("key", help="Private key in WIF format to import")
    wallet_sub.add_parser("list", help="List opened wallets, * = unlocked")
    wallet_sub.add_parser("keys", help="List of private keys from all unlocked wallets in wif format")

    sign = subparsers.add_parser("sign", help="Sign a transaction with the unlocked wallet keys")
    sign.add_argument("transaction", help="The JSON of the transaction to sign, or a JSON file containing it")
    sign.add_argument("-p", "--push-transaction", action="store_true", help="Push transaction after signing")
    sign.add_argument(
        "-c",
        "--compression",
        choices=[item.value for item in CompressionType],
        default=CompressionType.NONE.value,
        help="Compression applied when pushing the signed transaction (default: %(default)s)",
    )

    push = subparsers.add_parser("push", help="Push arbitrary transactions to the blockchain")
    push_sub = push.add_subparsers(dest="subcommand", required=True)
    push_trx = push_sub.add_parser("transaction", help="Push an arbitrary JSON transaction")
    push_trx.add_argument("transaction", help="The JSON of the transaction to push, or a JSON file containing it")
    push_trxs = push_sub.add_parser("transactions", help="Push an array of arbitrary JSON transactions")
    push_trxs.add_argument("transactions", help="The JSON array of the transactions to push")

    return parser


def _config_from_args(args: argparse.Namespace):
    return load_client_config(
        config_path=args.config,
        overrides={"chain_url": args.url, "wallet_url": args.wallet_url, "timeout": args.timeout},
    )


def _pipeline_from_args(args: argparse.Namespace) -> TransactionPipeline:
    config = _config_from_args(args)
    return TransactionPipeline(ChainAPI.from_config(config), WalletAPI.from_config(config))


def _options_from_args(args: argparse.Namespace) -> TransactionOptions:
    return TransactionOptions.from_args(
        expiration=args.expiration,
        ref_block=args.ref_block,
        skip_sign=args.skip_sign,
        dont_broadcast=args.dont_broadcast,
        compression=args.compression,
    )


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2))


def _send_actions(args: argparse.Namespace, *actions: Action) -> None:
    # options are parsed before any connection is configured
    options = _options_from_args(args)
    pipeline = _pipeline_from_args(args)
    _print_json(pipeline.push_actions(actions, options))


def _print_transactions_summary(result: Any) -> None:
    if not isinstance(result, dict):
        return
    for entry in result.get("transactions") or []:
        data = (entry.get("transaction") or {}).get("data") or {}
        print(f"{entry.get('seq_num')}] {entry.get('transaction_id')}  {data.get('expiration')}")


def cmd_version(args: argparse.Namespace) -> None:
    print(f"Build version: {__version__}")


def cmd_get(args: argparse.Namespace) -> None:
    chain = _pipeline_from_args(args).chain
    if args.subcommand == "info":
        _print_json(chain.get_info())
    elif args.subcommand == "block":
        _print_json(chain.get_block(args.block))
    elif args.subcommand == "transaction":
        _print_json(chain.get_transaction(args.id))
    elif args.subcommand == "transactions":
        result = chain.get_transactions(args.account_name, args.skip_seq, args.num_seq)
        _print_json(result)
        _print_transactions_summary(result)
    elif args.subcommand == "domain":
        _print_json(chain.get_domain(args.name))
    elif args.subcommand == "token":
        _print_json(chain.get_token(args.domain, args.name))
    elif args.subcommand == "group":
        _print_json(chain.get_group(args.name))
    elif args.subcommand == "account":
        _print_json(chain.get_account(args.name))
    else:  # pragma: no cover - argparse enforces choices
        raise CLIError(f"Unknown get command: {args.subcommand}")


def cmd_net(args: argparse.Namespace) -> None:
    chain = _pipeline_from_args(args).chain
    if args.subcommand == "connect":
        _print_json(chain.net_connect(args.host))
    elif args.subcommand == "disconnect":
        _print_json(chain.net_disconnect(args.host))
    elif args.subcommand == "status":
        _print_json(chain.net_status(args.host))
    elif args.subcommand == "peers":
        _print_json(chain.net_connections())
    else:  # pragma: no cover - argparse enforces choices
        raise CLIError(f"Unknown net command: {args.subcommand}")


def cmd_domain(args: argparse.Namespace) -> None:
    if args.subcommand == "create":
        action = new_domain(args.name, args.issuer, args.issue, args.transfer, args.manage)
    else:
        action = update_domain(args.name, args.issue, args.transfer, args.manage)
    _send_actions(args, action)


def cmd_token(args: argparse.Namespace) -> None:
    if args.subcommand == "issue":
        action = issue_tokens(args.domain, args.names, args.owner)
    else:
        action = transfer_token(args.domain, args.name, args.to)
    _send_actions(args, action)


def cmd_group(args: argparse.Namespace) -> None:
    if args.subcommand == "create":
        action = new_group(args.json)
    else:
        action = update_group(args.name, args.json)
    _send_actions(args, action)


def cmd_account(args: argparse.Namespace) -> None:
    if args.subcommand == "create":
        action = new_account(args.name, args.owner)
    elif args.subcommand == "transfer":
        action = transfer_evt(args.sender, args.receiver, args.amount)
    else:
        action = update_owner(args.name, args.owner)
    _send_actions(args, action)


def cmd_wallet(args: argparse.Namespace) -> None:
    wallet = _pipeline_from_args(args).wallet
    if args.subcommand == "create":
        result = wallet.create(args.name)
        print(f"Creating wallet: {args.name}")
        print("Save password to use in the future to unlock this wallet.")
        print("Without password imported keys will not be retrievable.")
        _print_json(result)
    elif args.subcommand == "open":
        wallet.open(args.name)
        print(f"Opened: {args.name}")
    elif args.subcommand == "lock":
        wallet.lock(args.name)
        print(f"Locked: {args.name}")
    elif args.subcommand == "lock_all":
        wallet.lock_all()
        print("Locked All Wallets")
    elif args.subcommand == "unlock":
        password = args.password or getpass.getpass("password: ")
        wallet.unlock(args.name, password)
        print(f"Unlocked: {args.name}")
    elif args.subcommand == "import":
        key = validate_private_key(args.key)
        wallet.import_key(args.name, key)
        print(f"Imported private key into wallet: {args.name}")
    elif args.subcommand == "list":
        print("Wallets:")
        _print_json(wallet.list_wallets())
    elif args.subcommand == "keys":
        _print_json(wallet.list_keys())
    else:  # pragma: no cover - argparse enforces choices
        raise CLIError(f"Unknown wallet command: {args.subcommand}")


def cmd_sign(args: argparse.Namespace) -> None:
    trx_variant = json_from_file_or_string(args.transaction)
    if not isinstance(trx_variant, dict):
        raise ValidationError("Transaction JSON must be an object")
    pipeline = _pipeline_from_args(args)
    result = pipeline.sign_existing(
        trx_variant,
        push=args.push_transaction,
        compression=CompressionType.parse(args.compression),
    )
    _print_json(result)


def cmd_push(args: argparse.Namespace) -> None:
    if args.subcommand == "transaction":
        trx_variant = json_from_file_or_string(args.transaction)
        if not isinstance(trx_variant, dict):
            raise ValidationError("Transaction JSON must be an object")
        _print_json(_pipeline_from_args(args).push_raw(trx_variant))
    else:
        trx_variants = json_from_file_or_string(args.transactions)
        _print_json(_pipeline_from_args(args).push_raw_many(trx_variants))


COMMANDS: Dict[str, Callable[[argparse.Namespace], None]] = {
    "version": cmd_version,
    "get": cmd_get,
    "net": cmd_net,
    "domain": cmd_domain,
    "token": cmd_token,
    "group": cmd_group,
    "account": cmd_account,
    "wallet": cmd_wallet,
    "sign": cmd_sign,
    "push": cmd_push,
}


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    handler = COMMANDS.get(args.command)
    try:
        if handler is None:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
        handler(args)
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (
        CLIError,
        ConfigurationError,
        ValidationError,
        RPCConnectionError,
        RPCError,
        RPCTransportError,
        TransactionError,
    ) as exc:
        parser.exit(1, f"error: {describe_error(exc, verbose=args.verbose)}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
