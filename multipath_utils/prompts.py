import re

from multipath_utils.commands import print_banner

MENU_OPTIONS = [
    ("install", "Install multipath and add iSCSI LUNs"),
    ("add", "Add iSCSI LUN"),
    ("remove", "Remove iSCSI LUN"),
    ("exit", "Exit")
]

_INVALID_CHARS = re.compile(r'[\s"\'{}#]')
_INVALID_DEVICE_CHARS = re.compile(r'[\r\n"{}#]')

def validate_config_value(value:str)->bool:
    """True if the value is non-empty and safe to write into multipath.conf."""
    return bool(value) and not _INVALID_CHARS.search(value)

def validate_device_value(value:str)->bool:
    """Device vendor/product strings are quoted, so inner spaces are allowed."""
    return bool(value.strip()) and not _INVALID_DEVICE_CHARS.search(value)

def validate_entry(entry:dict)->list:
    """
    Checks a single iSCSI/multipath entry

    Args:
        entry: (dict) Entry with 'storageId', 'target', 'lun', 'wwid' and 'alias' keys

    Returns:
        list: Error messages, empty if the entry is valid
    """
    errors = []
    for key in ('storageId', 'target', 'wwid', 'alias'):
        if not validate_config_value(str(entry.get(key, ""))):
            errors.append(f"Invalid {key}: '{entry.get(key, '')}'")
    if not str(entry.get('lun', "")).isdigit():
        errors.append(f"Invalid lun: '{entry.get('lun', '')}'")
    return errors

def ask_yes_no(question: str) -> bool:
    """
    Ask a yes/no question and return True for yes, False for no.

    Parameters:
    - question: Question to ask the user

    Returns:
    - True if user answers yes, False if user answers no
    """
    while True:
        answer = input(f"{question} (Y/N): ").strip().upper()
        if answer in ['Y', 'YES']:
            return True
        elif answer in ['N', 'NO']:
            return False
        else:
            print("Please answer Y or N")

def ask_value(prompt:str, default:str=None, validator=validate_config_value)->str:
    """
    Ask for a single value until a valid one is entered

    Args:
        prompt: (str) Text shown to the user
        default: (str) Value used when the user just hits enter
        validator: (callable) Returns True for acceptable values

    Returns:
        str: The entered value
    """
    suffix = f" (Default: {default})" if default is not None else ""
    while True:
        value = input(f"{prompt}{suffix}: ").strip()
        if value == "" and default is not None:
            value = default
        if validator(value):
            return value
        print("\tInvalid value! Empty values, spaces, quotes, braces and '#' are not allowed.")

def main_menu()->str:
    """
    Show the main menu and return the selected action.

    Returns:
        str: 'install', 'add', 'remove' or 'exit'
    """
    print("\nProxmox iSCSI Multipath Tool")
    print("What would you like to do?")
    for idx, (_, description) in enumerate(MENU_OPTIONS):
        print(f"{idx+1}. {description}")

    while True:
        choice = input(f"Select an option (1-{len(MENU_OPTIONS)}): ").strip()
        if choice.isdigit() and 1 <= int(choice) <= len(MENU_OPTIONS):
            action, description = MENU_OPTIONS[int(choice)-1]
            print(f"Selected: {description}")
            return action
        print(f"Invalid choice. Please enter a number between 1 and {len(MENU_OPTIONS)}.")

def collect_inputs()->tuple:
    """
    Interactively collects the iSCSI portal and the entries to configure

    Returns:
        tuple: (str:portal, list:entries[dict])
        entries = [
            {
                'storageId': str,
                'target': str,
                'lun': int,
                'wwid': str,
                'alias': str
            }
        ]
    """
    print_banner("Configure iSCSI LUNs")
    portal = ask_value("Enter the iSCSI portal (only one, even if redundant paths are used)")
    count = int(ask_value("How many iSCSI entries do you want to configure?", default="1",
                          validator=lambda value: value.isdigit() and int(value) > 0))

    entries = []
    for i in range(1, count + 1):
        print(f"\nEntry {i}:")
        storageId = ask_value("\tStorage ID (i.e. iscsi-storage1)")
        target = ask_value("\tiSCSI target (i.e. iqn.2001-04.com.example:storage.target)")
        lun = int(ask_value("\tLUN (i.e. 1)", validator=str.isdigit))
        while True:
            wwid = ask_value("\tWWID (i.e. 36001405abcd1234)")
            alias = ask_value("\tAlias (i.e. mydisk1)")
            if ask_yes_no(f"\tUse alias '{alias}' for WWID '{wwid}'?"):
                break
        entries.append({
            'storageId': storageId,
            'target': target,
            'lun': lun,
            'wwid': wwid,
            'alias': alias
        })
    return portal, entries

def ask_wwid_to_remove(existing:list)->str:
    """
    Shows the configured multipath entries and asks which WWID to remove

    Args:
        existing: (list) List of dictionaries with 'wwid' and 'alias' keys

    Returns:
        str: The WWID to remove
    """
    print_banner("Remove multipath entry")
    if existing:
        print(f"{'WWID':<50} {'Alias':<20}")
        for entry in existing:
            print(f"{entry['wwid']:<50} {entry['alias']:<20}")
    else:
        print("No multipath entries found in the configuration.")
    print()
    return ask_value("Enter the WWID of the multipath entry to remove")
