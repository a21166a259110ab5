from datetime import datetime, timedelta
from pathlib import Path

from multipath_utils.commands import runCommand, command_exists, print_banner

APT_LISTS_DIR = Path('/var/lib/apt/lists')

def is_package_installed(package_name: str) -> bool:
    """
    Check if a Debian package is installed using dpkg.

    Args:
        package_name: (str) Name of the package to check

    Returns:
        Bool: True if package is installed, False otherwise
    """
    # dpkg -s returns 0 if installed, 1 if not
    stdout, stderr, success = runCommand(["dpkg", "-s", package_name])
    return success

def should_update_apt(threshold_hours: int = 24) -> bool:
    """
    Check if apt cache should be updated based on last update time.

    Args:
        threshold_hours: (int) Number of hours since last update before recommending update

    Returns:
        Bool: True if update is recommended, False otherwise
    """
    if APT_LISTS_DIR.exists():
        try:
            # Get the most recently modified file in apt lists
            mtimes = [f.stat().st_mtime for f in APT_LISTS_DIR.glob('*') if f.is_file()]
            if mtimes:
                last_update = datetime.fromtimestamp(max(mtimes))
                return datetime.now() - last_update > timedelta(hours=threshold_hours)
        except OSError as e:
            print(f"Could not determine last update time: {e}")
            return True

    # If we can't determine, assume update is needed
    return True

def install_package(package_name: str, force_update: bool = False, update_threshold_hours: int = 24) -> bool:
    """
    Install a package on a Debian system using apt.

    Args:
        package_name: (str) Name of the package to install
        force_update: (bool) Force apt update even if recently updated
        update_threshold_hours: (int) Hours since last update before updating again

    Returns:
        Bool: True if package was installed successfully, False otherwise
    """
    # 1. Check if apt update is needed
    if force_update or should_update_apt(update_threshold_hours):
        print("Updating apt cache...")
        stdout, stderr, success = runCommand(["apt-get", "update", "-y"])
        if not success:
            print(f"Error updating apt cache: {stderr}")
            return False
        print("Apt cache updated successfully")
    else:
        print("Apt cache is recent, skipping update")

    # 2. Install the package
    print(f"Installing {package_name}...")
    stdout, stderr, success = runCommand(["apt-get", "install", "-y", package_name])
    if not success:
        print(f"Error installing {package_name}: {stderr}")
        return False
    print(f"{package_name} installed successfully")
    return True

def ensure_iscsi_tools() -> bool:
    """
    Installs open-iscsi if the iscsiadm command is missing.

    Returns:
        bool: True if iscsiadm is available afterwards, False otherwise
    """
    print_banner("Checking iSCSI tools")
    if command_exists("iscsiadm"):
        print("iscsiadm is already installed.")
        return True

    print("iscsiadm not found. Installing open-iscsi...")
    return install_package("open-iscsi")

def ensure_multipath_tools() -> bool:
    """
    Installs multipath-tools if dpkg does not report it as installed.

    Returns:
        bool: True if multipath-tools is installed afterwards, False otherwise
    """
    print_banner("Checking multipath tools")
    if is_package_installed("multipath-tools"):
        print("multipath-tools is already installed.")
        return True

    print("multipath-tools not found. Installing...")
    return install_package("multipath-tools")
