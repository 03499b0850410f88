import shutil
import subprocess


def main() -> int:
    systemctl = shutil.which("systemctl")
    if not systemctl:
        print("systemctl not found; can't request sleep")
        return 1

    try:
        subprocess.run([systemctl, "suspend"], check=True)
    except subprocess.CalledProcessError as e:
        print(f"systemctl suspend failed: {e}")
        return 1
    return 0
