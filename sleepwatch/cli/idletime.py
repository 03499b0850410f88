from sleepwatch.providers.session_linux import LoginctlSession


def main() -> int:
    snapshot = LoginctlSession().get_snapshot()
    if snapshot.idle_seconds is None:
        print(f"idle time unavailable ({snapshot.error or 'logind reports no idle hint'})")
        return 1
    print(f"{snapshot.idle_seconds:.1f}")
    return 0
