import os, json, sys
from aclgate.keys import generate_keypair

def main(name: str):
    os.makedirs("secrets", exist_ok=True)
    private_key, public_key = generate_keypair()
    path = f"secrets/{name}_key.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"name": name, "private_key_b64": private_key, "public_key_b64": public_key}, f, indent=2)
    print(json.dumps({"name": name, "publicKey": public_key, "keyFile": path}, indent=2))

if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else "user")
