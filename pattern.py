import re
# Patterns kept in their own file so the example response below never gets parsed as a real one

role_tag_pattern = re.compile(r"^\[char-(.+?)\]", re.MULTILINE)

messages_open_tag = "[messages]"
# Whichever of these comes first ends a [messages] section
messages_boundary_tags = ("[/messages]", "[moments]", "[action-")

quote_pattern = re.compile(r"^\[quote\]#(\d+)\[reply\](.+)$")
legacy_quote_pattern = re.compile(r"^\[quote\](.+?)\[reply\](.+)$")   # no number, cannot be resolved
emoji_pattern = re.compile(r"^\[emoji\](.+)$")
image_pattern = re.compile(r"^\[image\](.+)$")
transfer_pattern = re.compile(r"^\[transfer\]\s*(\d+(?:\.\d+)?)\s*(?:\|\s*(.*))?$")
plan_pattern = re.compile(r"^\[plan\](.+)$")
signature_pattern = re.compile(r"^\[signature\](.+)$")
recall_pattern = re.compile(r"^\[recall\](.+)$")

def example_template(name: str = "Name") -> str:
    return f"""[char-{name}]
[messages]
Hi there
How have you been?
[/messages]"""

response_format_instructions = """Reply only in this format, one bubble per line:
[char-<name>]
[messages]
plain text
[emoji]<sticker name>
[image]<picture description>
[quote]#<message number>[reply]<reply text>
[transfer]<amount>|<note>
[plan]<activity title>
[signature]<new status line>
[recall]<text that gets taken back>
[/messages]"""
