import os
import secrets

# Keys that get a fresh random value on every run
GENERATED_SECRETS = ("SESSION_SECRET", "SIGNED_LINK_SECRET", "PASSWORD_PEPPER")

def generate_secret():
    return secrets.token_urlsafe(48)

def setup_env():
    if os.path.exists(".env"):
        response = input("A .env file already exists. Overwrite it? (y/N): ")
        if response.lower() != 'y':
            print("Aborted.")
            return

    if not os.path.exists(".env.example"):
        print("Error: .env.example not found.")
        return

    print("Reading .env.example...")
    with open(".env.example", "r") as f:
        env_content = f.read()

    # Changing PASSWORD_PEPPER later invalidates every stored password hash
    new_lines = []
    for line in env_content.splitlines():
        key = line.split("=", 1)[0].strip()
        if key in GENERATED_SECRETS:
            new_lines.append(f'{key}="{generate_secret()}"')
        elif key == "ADMIN_PASSWORD":
            admin_password = generate_secret()[:20]
            new_lines.append(f'ADMIN_PASSWORD="{admin_password}"')
        else:
            new_lines.append(line)

    with open(".env", "w") as f:
        f.write("\n".join(new_lines))
        f.write("\n") # Ensure trailing newline
    os.chmod(".env", 0o600)

    print("SUCCESS: .env file created with new secrets.")
    print("The initial administrator password is stored in .env (ADMIN_PASSWORD).")

if __name__ == "__main__":
    setup_env()
