#!/usr/bin/env python3
"""
Assura Command Line Interface

Usage:
    assura keygen --output <file>
    assura address --key-file <file>
    assura score <address>
    assura attest --key-file <file> --subject <address> [--chain-id N]
    assura encode --file <bundle.json>
    assura decode <hex>
    assura verify --data <hex> --signer <address> [policy flags]
    assura key <selector | function signature>
"""

import argparse
import json
import sys
from datetime import datetime


DEFAULT_CHAIN_ID = 84532
DEFAULT_VERIFIER = "0x0cd35ce218e0d9ed83a5da919d0e1ce9c60d49a7"


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def _domain(args):
    from assura import Eip712Domain
    return Eip712Domain(chain_id=args.chain_id, verifying_contract=args.contract)


def _read_data(args) -> str:
    if args.data:
        return args.data.strip()
    with open(args.file, 'r') as f:
        return f.read().strip()


def cmd_keygen(args):
    """Generate a secp256k1 signing key file."""
    from assura import generate_private_key, write_key_file

    kid = args.key_id or f"kid:assura-{datetime.now().strftime('%Y%m%d')}-001"
    data = write_key_file(args.output, generate_private_key(), kid=kid)
    print(f"Key saved to: {args.output}")
    print(f"\nKey id: {data['kid']}", file=sys.stderr)
    print(f"Address: {data['address']}", file=sys.stderr)
    return 0


def cmd_address(args):
    """Print the signer address of a key file."""
    from assura import read_key_file

    print(read_key_file(args.key_file).address)
    return 0


def cmd_score(args):
    """Derive the score for an address."""
    from assura import derive_score

    print(derive_score(args.address))
    return 0


def cmd_attest(args):
    """Issue an attestation locally with a key file."""
    from assura import AttestationLedger, AttestationSigner, encode_hex, read_key_file

    signer = AttestationSigner(
        read_key_file(args.key_file),
        _domain(args),
        AttestationLedger(),
        scheme=args.scheme,
    )
    bundle = signer.issue(args.subject, args.chain_id, policy_key=args.key)
    output = {
        **bundle.to_dict(),
        "teeAddress": signer.address,
        "complianceData": encode_hex(bundle),
    }

    if args.output:
        save_json(output, args.output)
        print(f"Attestation saved to: {args.output}")
    else:
        print(json.dumps(output, indent=2))
    return 0


def cmd_encode(args):
    """Encode a bundle JSON file to hex."""
    from assura import SignedClaim, encode_hex

    print(encode_hex(SignedClaim.from_dict(load_json(args.file))))
    return 0


def cmd_decode(args):
    """Decode a hex bundle to JSON."""
    from assura import DecodeError, decode

    try:
        bundle = decode(_read_data(args))
    except DecodeError as e:
        print(f"✗ DECODE_ERROR: {e}", file=sys.stderr)
        return 1
    print(json.dumps(bundle.to_dict(), indent=2))
    return 0


def cmd_verify(args):
    """Verify a hex bundle against a policy."""
    from assura import Policy, normalize_address, verify_claim, now_epoch

    for flag, value in (("--resource", args.resource), ("--signer", args.signer)):
        try:
            normalize_address(value)
        except ValueError:
            print(f"✗ Invalid address for {flag}: {value}", file=sys.stderr)
            return 1

    policy = Policy(
        min_score=args.min_score,
        expiry=args.expiry,
        context_id=args.policy_chain_id,
    )
    result = verify_claim(
        args.resource,
        args.key,
        _read_data(args),
        policy,
        trusted_signer=args.signer,
        domain=_domain(args),
        runtime_context=args.chain_id,
        now=args.now if args.now is not None else now_epoch(),
    )

    if result.accepted:
        print("✓ ACCEPTED")
        return 0
    print(f"✗ REJECTED: {result.reason.value}")
    if result.details:
        print(json.dumps(result.details, indent=2))
    return 1


def cmd_key(args):
    """Derive a bytes32 policy key."""
    from assura import selector_key, to_bytes32, to_hex

    value = args.value
    if value.lower().startswith("0x"):
        print(to_hex(to_bytes32(value)))
    else:
        print(to_hex(selector_key(value)))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assura",
        description="Assura compliance attestation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  assura keygen -o signer.json
  assura attest -K signer.json -s 0xAbc... -o bundle.json
  assura verify -d 0x... --signer 0xSigner... --resource 0xVault... --min-score 100
  assura key "deposit(uint256,address,bytes)"
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_domain(p):
        p.add_argument("--chain-id", type=int, default=DEFAULT_CHAIN_ID, help="Chain / context id")
        p.add_argument("--contract", default=DEFAULT_VERIFIER, help="EIP-712 verifying contract")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate signing key file")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output key file")
    keygen_parser.add_argument("-k", "--key-id", help="Key identifier")

    # address
    address_parser = subparsers.add_parser("address", help="Show key file address")
    address_parser.add_argument("-K", "--key-file", required=True, help="Key file")

    # score
    score_parser = subparsers.add_parser("score", help="Derive score for an address")
    score_parser.add_argument("address", help="Subject address")

    # attest
    attest_parser = subparsers.add_parser("attest", help="Issue an attestation locally")
    attest_parser.add_argument("-K", "--key-file", required=True, help="Key file")
    attest_parser.add_argument("-s", "--subject", required=True, help="Subject address")
    attest_parser.add_argument("--key", help="Policy key (bytes32 or selector)")
    attest_parser.add_argument("--scheme", choices=["eip712", "eip191"], default="eip712")
    attest_parser.add_argument("-o", "--output", help="Output JSON file")
    add_domain(attest_parser)

    # encode
    encode_parser = subparsers.add_parser("encode", help="Encode bundle JSON to hex")
    encode_parser.add_argument("-f", "--file", required=True, help="Bundle JSON file")

    # decode
    decode_parser = subparsers.add_parser("decode", help="Decode hex bundle to JSON")
    decode_group = decode_parser.add_mutually_exclusive_group(required=True)
    decode_group.add_argument("-d", "--data", help="Hex bundle")
    decode_group.add_argument("-f", "--file", help="File containing hex bundle")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify a hex bundle")
    verify_group = verify_parser.add_mutually_exclusive_group(required=True)
    verify_group.add_argument("-d", "--data", help="Hex bundle")
    verify_group.add_argument("-f", "--file", help="File containing hex bundle")
    verify_parser.add_argument("--signer", required=True, help="Trusted signer address")
    verify_parser.add_argument("--resource", required=True, help="Protected resource address")
    verify_parser.add_argument("--key", default="0x00", help="Policy key")
    verify_parser.add_argument("--min-score", type=int, default=0)
    verify_parser.add_argument("--expiry", type=int, default=0)
    verify_parser.add_argument("--policy-chain-id", type=int, default=0)
    verify_parser.add_argument("--now", type=int, help="Override current time")
    add_domain(verify_parser)

    # key
    key_parser = subparsers.add_parser("key", help="Derive a bytes32 policy key")
    key_parser.add_argument("value", help="0x selector/key or function signature")

    return parser


COMMANDS = {
    "keygen": cmd_keygen,
    "address": cmd_address,
    "score": cmd_score,
    "attest": cmd_attest,
    "encode": cmd_encode,
    "decode": cmd_decode,
    "verify": cmd_verify,
    "key": cmd_key,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 2
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
