#!/usr/bin/env python3
from __future__ import annotations
import os
import sys
import subprocess
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
VENV_DIR = ROOT / ".venv"
sys.path.insert(0, str(ROOT))


def run(cmd, **kwargs):
    """Run a command, echoing it first."""
    print("+", " ".join(str(c) for c in cmd))
    subprocess.check_call(cmd, **kwargs)


def configure_api_key() -> None:
    """Store the Gemini API key using the user's preferred method."""
    print("Choose how to store your Gemini API key:")
    print("1. Environment variable (recommended for production)")
    print("2. System keyring (recommended for personal use)")
    print("3. Key file (~/.config/irene-assistant/gemini_api_key)")

    while True:
        choice = input("Choose [1-3] or 'skip' to configure later: ").strip().lower()

        if choice in ('1', 'env', 'environment'):
            print("\nTo set as environment variable:")
            print("Linux/macOS: export GEMINI_API_KEY='your-key-here'")
            print("Windows:     set GEMINI_API_KEY=your-key-here")
            input("Press Enter when you've set the environment variable...")
            break

        elif choice in ('2', 'keyring'):
            try:
                import keyring
                from cloud_agent.gemini_client import KEYRING_SERVICE, KEYRING_USER
            except ImportError as e:
                print(f"❌ keyring support not available ({e}). Install requirements first.")
                continue
            key = input("Enter your Gemini API key: ").strip()
            if key:
                try:
                    keyring.set_password(KEYRING_SERVICE, KEYRING_USER, key)
                except Exception as e:
                    print(f"❌ Failed to save to keyring: {e}")
                    continue
                print("✓ API key saved to system keyring.")
            else:
                print("No key entered.")
            break

        elif choice in ('3', 'file'):
            cfg_dir = Path.home() / ".config" / "irene-assistant"
            cfg_dir.mkdir(parents=True, exist_ok=True)
            cfg_file = cfg_dir / "gemini_api_key"
            key = input("Enter your Gemini API key: ").strip()
            if key:
                cfg_file.write_text(key, encoding="utf-8")
                try:
                    os.chmod(cfg_dir, 0o700)
                    os.chmod(cfg_file, 0o600)
                except OSError:
                    pass
                print(f"✓ API key saved to: {cfg_file}")
            else:
                print("No key entered.")
            break

        elif choice == 'skip':
            print("You can configure the API key later.")
            break

        else:
            print("Invalid choice. Please choose 1-3 or 'skip'.")


def main() -> None:
    print("=== Irene Assistant Setup ===\n")

    # 1) Create virtual environment
    if not VENV_DIR.exists():
        print(f"Creating virtualenv at {VENV_DIR} ...")
        run([sys.executable, "-m", "venv", str(VENV_DIR)])
    else:
        print(f"Virtualenv already exists at {VENV_DIR}")

    # 2) Work out paths to pip & python inside the venv
    if os.name == "nt":
        venv_python = VENV_DIR / "Scripts" / "python.exe"
        venv_pip = VENV_DIR / "Scripts" / "pip.exe"
    else:
        venv_python = VENV_DIR / "bin" / "python"
        venv_pip = VENV_DIR / "bin" / "pip"

    if not venv_python.exists():
        raise SystemExit(f"Could not find venv python at {venv_python}")

    # 3) Install requirements
    req = ROOT / "requirements.txt"
    if req.exists():
        print("\nInstalling dependencies from requirements.txt ...")
        run([str(venv_pip), "install", "-r", str(req)])
    else:
        print("WARNING: requirements.txt not found. Skipping dependency install.")

    # 4) Configure API key
    print("\n" + "=" * 50)
    print("API KEY CONFIGURATION")
    print("=" * 50)
    try:
        from cloud_agent.gemini_client import ConfigurationError, _load_api_key
    except ImportError:
        configure_api_key()
    else:
        try:
            _load_api_key()
        except ConfigurationError:
            configure_api_key()
        else:
            print("✓ API key is already configured.")
            if input("Update/reconfigure API key? [y/N]: ").strip().lower() in ('y', 'yes'):
                configure_api_key()

    # 5) Final instructions
    print("\n=== Setup complete ===\n")
    print("To start the assistant, use:")
    if os.name == "nt":
        print(f'  "{venv_python}" assistant_cli.py')
    else:
        print(f'  {venv_python} assistant_cli.py')


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nSetup cancelled.")
