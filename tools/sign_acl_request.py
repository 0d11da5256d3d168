import json, sys
from aclgate.acl import grant_message, revoke_message
from aclgate.keys import sign_message
from aclgate.paths import StorePath

def main(key_file: str, action: str, path: str, grantee: str):
    key = json.load(open(key_file, "r", encoding="utf-8"))
    canonical = StorePath.parse(path).key()
    message = grant_message(canonical, grantee) if action == "grant" else revoke_message(canonical, grantee)
    body = {"path": canonical, "publicKey": grantee, "signature": sign_message(message, key["private_key_b64"])}
    print(json.dumps(body, indent=2))

if __name__ == "__main__":
    if len(sys.argv) != 5 or sys.argv[2] not in ("grant", "revoke"):
        print("Usage: python tools/sign_acl_request.py <key_file> grant|revoke <path> <grantee_public_key>"); raise SystemExit(2)
    main(*sys.argv[1:])
