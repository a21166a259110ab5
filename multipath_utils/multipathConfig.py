import os, re, shutil, tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

MULTIPATH_CONF = "/etc/multipath.conf"

DEFAULTS_SECTION = {
    "user_friendly_names": "yes",
    "find_multipaths": "yes"
}

BLACKLIST_DEVNODES = [
    "^(ram|raw|loop|fd|md|dm-|sr|scd|st)[0-9]*",
    "^sda"
]

DEVICE_SECTION = {
    "path_grouping_policy": "group_by_prio",
    "prio": "\"alua\"",
    "hardware_handler": "\"1 alua\"",
    "path_selector": "\"service-time 0\"",
    "path_checker": "tur",
    "no_path_retry": "\"queue\"",
    "failback": "immediate",
    "fast_io_fail_tmo": 5,
    "dev_loss_tmo": "infinity",
    "rr_min_io_rq": 1,
    "rr_weight": "uniform"
}

INDENT = "    "

_BLOCK_START = re.compile(r'^\s*multipath\s*\{')
_TOKEN_PATTERN = r'"[^"]*"|\'[^\']*\'|[{}]|[^\s{}]+'
# '#' splits words so a comment glued to a value still ends the line
_BRACE_TOKEN_PATTERN = r'"[^"]*"|\'[^\']*\'|[{}#]|[^\s{}#]+'

def format_multipath_block(wwid:str, alias:str)->list:
    """
    Renders a single multipath block for the multipaths section.

    Args:
        wwid: (str) World Wide Identifier of the LUN
        alias: (str) Alias the multipath device will be created under

    Returns:
        list: Lines of the block, each terminated by a newline
    """
    return [
        f"{INDENT}multipath {{\n",
        f"{INDENT * 2}wwid \"{wwid}\"\n",
        f"{INDENT * 2}alias \"{alias}\"\n",
        f"{INDENT}}}\n"
    ]

def generate_multipath_config(entries:list, vendor:str="Nimble", product:str="Server")->str:
    """
    Generates the complete contents of a multipath.conf file.

    Args:
        entries: (list) List of dictionaries with 'wwid' and 'alias' keys
        vendor: (str) Vendor string of the storage array
        product: (str) Product string of the storage array

    Returns:
        str: The multipath.conf file contents
    """
    lines = []

    # Add defaults section to lines
    lines.append("defaults {")
    for key, value in DEFAULTS_SECTION.items():
        lines.append(f"{INDENT}{key} {value}")
    lines.append("}")
    lines.append("")

    # Add blacklist section to lines
    lines.append("blacklist {")
    for devnode in BLACKLIST_DEVNODES:
        lines.append(f"{INDENT}devnode \"{devnode}\"")
    lines.append("}")
    lines.append("")

    # Storage array paths are exempt from the blacklist
    lines.append("blacklist_exceptions {")
    lines.append(f"{INDENT}device {{")
    lines.append(f"{INDENT * 2}vendor  \"{vendor}\"")
    lines.append(f"{INDENT * 2}product \"{product}\"")
    lines.append(f"{INDENT}}}")
    lines.append("}")
    lines.append("")

    # Add devices section to lines
    lines.append("devices {")
    lines.append(f"{INDENT}device {{")
    lines.append(f"{INDENT * 2}{'vendor':<20} \"{vendor}\"")
    lines.append(f"{INDENT * 2}{'product':<20} \"{product}\"")
    for key, value in DEVICE_SECTION.items():
        lines.append(f"{INDENT * 2}{key:<20} {value}")
    lines.append(f"{INDENT}}}")
    lines.append("}")
    lines.append("")

    # Add multipaths section last so new entries can go before the final brace
    lines.append("multipaths {")
    content = "\n".join(lines) + "\n"
    for entry in entries:
        content += "".join(format_multipath_block(entry['wwid'], entry['alias']))
    content += "}\n"

    return content

def _find_final_closing_brace(lines:list)->int:
    for index in range(len(lines) - 1, -1, -1):
        if lines[index].lstrip().startswith("}"):
            return index
    return -1

def add_multipath_entries(lines:list, entries:list)->list:
    """
    Inserts a multipath block for every entry before the final closing brace.

    Entries are inserted in the order given and are not de-duplicated.

    Args:
        lines: (list) Current config file lines, with line terminators
        entries: (list) List of dictionaries with 'wwid' and 'alias' keys

    Returns:
        list: The new config file lines

    Raises:
        ValueError: If the file has no closing brace to insert before
    """
    closingIndex = _find_final_closing_brace(lines)
    if closingIndex < 0:
        raise ValueError("No closing brace found in multipath configuration")

    newBlocks = []
    for entry in entries:
        newBlocks.extend(format_multipath_block(entry['wwid'], entry['alias']))

    return lines[:closingIndex] + newBlocks + lines[closingIndex:]

def _brace_delta(line:str)->int:
    """Net count of opening minus closing braces, ignoring quotes and comments."""
    delta = 0
    for token in re.findall(_BRACE_TOKEN_PATTERN, line):
        if token == "#":
            break
        if token == "{":
            delta += 1
        elif token == "}":
            delta -= 1
    return delta

def remove_multipath_entry(lines:list, wwid:str)->list:
    """
    Drops every multipath block that mentions the given WWID.

    Lines outside of a dropped block are passed through verbatim. A WWID
    that matches no block leaves the lines unchanged.

    Args:
        lines: (list) Current config file lines, with line terminators
        wwid: (str) WWID of the entry to remove

    Returns:
        list: The new config file lines

    Raises:
        ValueError: If the WWID is empty
    """
    if not wwid:
        raise ValueError("WWID must not be empty")

    result = []
    block = []
    depth = 0

    for line in lines:
        if not block:
            if _BLOCK_START.match(line):
                block = [line]
                depth = _brace_delta(line)
            else:
                result.append(line)
                continue
        else:
            block.append(line)
            depth += _brace_delta(line)

        if depth <= 0:
            if not any(wwid in blockLine for blockLine in block):
                result.extend(block)
            block = []

    # Unterminated block at end of file
    result.extend(block)
    return result

def _tokenize(content:str)->list:
    """Tokenize the multipath.conf content."""
    tokens = []
    for match in re.finditer(_TOKEN_PATTERN, content):
        token = match.group()
        # Remove quotes from quoted strings
        if (token.startswith('"') and token.endswith('"')) or \
           (token.startswith("'") and token.endswith("'")):
            token = token[1:-1]
        tokens.append(token)
    return tokens

def _extract_block(tokens:list)->tuple:
    """Extract tokens until matching closing brace."""
    depth = 1
    block = []
    i = 0

    while i < len(tokens) and depth > 0:
        if tokens[i] == '{':
            depth += 1
        elif tokens[i] == '}':
            depth -= 1
            if depth == 0:
                i += 1
                break
        block.append(tokens[i])
        i += 1

    return block, i

def _parse_block_tokens(tokens:list)->dict[str, Any]:
    result = {}
    i = 0

    while i < len(tokens):
        token = tokens[i]

        if token in ('{', '}'):
            i += 1
        elif i + 1 < len(tokens) and tokens[i + 1] == '{':
            # Nested section
            sectionName = token
            blockTokens, consumed = _extract_block(tokens[i + 2:])
            i += 2 + consumed
            result.setdefault(sectionName, []).append(_parse_block_tokens(blockTokens))
        elif i + 1 < len(tokens) and tokens[i + 1] not in ('{', '}'):
            result.setdefault(token, tokens[i + 1])
            i += 2
        else:
            i += 1

    return result

def list_multipath_entries(content:str)->list:
    """
    Lists the WWID/alias pairs of all multipath blocks in a config file.

    Args:
        content: (str) multipath.conf file contents

    Returns:
        list: List of dictionaries with 'wwid' and 'alias' keys
    """
    stripped = "\n".join(re.sub(r'#.*$', '', line) for line in content.split('\n'))
    parsed = _parse_block_tokens(_tokenize(stripped))

    entries = []
    for section in parsed.get("multipaths", []):
        for block in section.get("multipath", []):
            entries.append({
                "wwid": block.get("wwid", ""),
                "alias": block.get("alias", "")
            })
    return entries

def readMultipathConfigFile(path:str=MULTIPATH_CONF)->list:
    """
    Reads the multipath configuration file as a list of lines

    Args:
        path: (str) Location of the multipath configuration file

    Returns:
        list: Lines of the file including their line terminators, or None if the file does not exist
    """
    filePath = Path(path)
    if not filePath.exists():
        return None
    with open(filePath, "r", newline="") as f:
        return f.readlines()

def writeMultipathConfigFile(path:str, lines:list)->None:
    """
    Writes the multipath configuration through a temporary file in the same
    directory, so the file is either fully replaced or left untouched.

    Args:
        path: (str) Location of the multipath configuration file
        lines: (list) Lines to write, including their line terminators
    """
    filePath = Path(path)
    fd, tmpPath = tempfile.mkstemp(prefix=f".{filePath.name}.", dir=filePath.parent)
    try:
        with os.fdopen(fd, "w", newline="") as f:
            f.write("".join(lines))
        if filePath.exists():
            shutil.copymode(filePath, tmpPath)
        else:
            os.chmod(tmpPath, 0o644)
        os.replace(tmpPath, filePath)
    except Exception:
        os.remove(tmpPath)
        raise

def backup_multipath_config(path:str=MULTIPATH_CONF, now:datetime=None)->Path:
    """
    Copies the existing multipath configuration to a timestamped backup file.

    Args:
        path: (str) Location of the multipath configuration file
        now: (datetime) Timestamp to use for the backup name. Default is the current time

    Returns:
        Path: Location of the backup, or None if there was no file to back up
    """
    filePath = Path(path)
    if not filePath.exists():
        print(f"No existing {filePath} found, nothing to back up.")
        return None

    if now is None:
        now = datetime.now()
    backupPath = filePath.with_name(f"{filePath.name}.backup.{now.strftime('%Y%m%d%H%M%S')}")
    shutil.copy2(filePath, backupPath)
    print(f"Backup created: {backupPath}")
    return backupPath
