#!/usr/bin/env python3
"""First-run setup for sitepilot.

Creates ``.venv``, installs the package, then writes ``config.yaml`` and
``.env`` from the bundled examples, asking for the secrets that are still
empty.

Usage:
    python install.py              # install and prompt for keys
    python install.py --dev        # editable install with test tools
    python install.py --no-prompt  # keep .env as copied
"""

import argparse
import getpass
import platform
import shutil
import subprocess
import sys
from pathlib import Path

MIN_PYTHON = (3, 11)
ROOT = Path(__file__).resolve().parent

# (variable, prompt, required)
SECRETS = [
    ("OPENAI_API_KEY", "OpenAI API key", True),
    ("ANTHROPIC_API_KEY", "Anthropic API key for the fallback model", False),
    ("VERCEL_TOKEN", "Vercel token (enables deployment)", False),
    ("VERCEL_TEAM_ID", "Vercel team id", False),
]


def venv_bin(name: str) -> Path:
    sub = "Scripts" if platform.system() == "Windows" else "bin"
    return ROOT / ".venv" / sub / name


def install_package(dev: bool) -> None:
    venv = ROOT / ".venv"
    if venv.is_dir():
        print("Reusing .venv")
    else:
        print("Creating .venv ...")
        subprocess.check_call([sys.executable, "-m", "venv", str(venv)])

    pip = str(venv_bin("pip"))
    subprocess.check_call([pip, "install", "--quiet", "--upgrade", "pip"])
    cmd = [pip, "install", "-e", ".[dev]"] if dev else [pip, "install", "."]
    print("Installing sitepilot" + (" with dev extras" if dev else "") + " ...")
    subprocess.check_call(cmd, cwd=ROOT)


def copy_example(example: str, target: str) -> Path:
    path = ROOT / target
    if path.exists():
        print(f"{target} exists, leaving it alone")
    else:
        shutil.copy(ROOT / example, path)
        print(f"Wrote {target}")
    return path


def read_env(path: Path) -> dict[str, str]:
    values = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.partition("=")
        if sep and not line.lstrip().startswith("#"):
            values[key.strip()] = value.strip()
    return values


def prompt_secrets(env_path: Path) -> None:
    values = read_env(env_path)
    changed = False
    for name, label, required in SECRETS:
        if values.get(name):
            continue
        suffix = "" if required else " [enter to skip]"
        answer = getpass.getpass(f"{label}{suffix}: ").strip()
        if answer:
            values[name] = answer
            changed = True
        elif required:
            print(f"  {name} left empty; the classifier will run on keyword heuristics only")

    if changed:
        env_path.write_text("".join(f"{k}={v}\n" for k, v in values.items()), encoding="utf-8")
        print(f"Updated {env_path.name}")


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(f"sitepilot needs Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+, found {platform.python_version()}")

    parser = argparse.ArgumentParser(description="Install and configure sitepilot")
    parser.add_argument("--dev", action="store_true", help="editable install with test tools")
    parser.add_argument("--no-prompt", action="store_true", help="do not ask for API keys")
    args = parser.parse_args()

    install_package(args.dev)
    (ROOT / "data").mkdir(exist_ok=True)
    copy_example("config.example.yaml", "config.yaml")
    env_path = copy_example(".env.example", ".env")

    if not args.no_prompt and sys.stdin.isatty():
        prompt_secrets(env_path)

    # Validation failure is reported but does not undo the install.
    check = subprocess.run([str(venv_bin("sitepilot")), "config-check"], cwd=ROOT)
    if check.returncode != 0:
        print("config-check failed; edit config.yaml and run `sitepilot config-check` again")
        return

    activate = r".venv\Scripts\activate" if platform.system() == "Windows" else "source .venv/bin/activate"
    print()
    print(f"Ready. Run `{activate}` and then `sitepilot chat`.")


if __name__ == "__main__":
    main()
