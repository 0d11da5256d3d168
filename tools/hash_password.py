import getpass, sys
import bcrypt
from nacl import pwhash

def main(args):
    use_bcrypt = "--bcrypt" in args
    rest = [a for a in args if a != "--bcrypt"]
    password = (rest[0] if rest else getpass.getpass("Password: ")).encode("utf-8")
    if use_bcrypt:
        print(bcrypt.hashpw(password, bcrypt.gensalt()).decode("ascii"))
    else:
        print(pwhash.str(password).decode("ascii"))

if __name__ == "__main__":
    main(sys.argv[1:])
