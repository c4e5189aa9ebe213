import pytest
from pattern import (
    role_tag_pattern, quote_pattern, transfer_pattern, legacy_quote_pattern,
    example_template, response_format_instructions,
)
from rewind import (
    MemoryStore, MessageLog, ResponseParser, build_number_map, resolve_reference, number_lines,
    check_response_format, make_message, UnresolvedReferenceError, REMOTE, LOCAL,
)
from rewind.parser import extract_role_blocks, extract_messages_content, parse_bubble


class TestPatterns:
    def test_role_tag(self):
        m = role_tag_pattern.search("noise\n[char-Mei Ling]\n[messages]")
        assert m and m.group(1) == "Mei Ling"

    def test_quote_with_number(self):
        m = quote_pattern.match("[quote]#12[reply]see you then")
        assert m.group(1) == "12"
        assert m.group(2) == "see you then"
        assert not quote_pattern.match("[quote]hello[reply]hi")
        assert legacy_quote_pattern.match("[quote]hello[reply]hi")

    def test_transfer(self):
        m = transfer_pattern.match("[transfer]52.5|dinner")
        assert m.group(1) == "52.5" and m.group(2) == "dinner"
        m = transfer_pattern.match("[transfer] 10")
        assert m.group(1) == "10" and m.group(2) is None

    def test_example_template_passes_check(self):
        assert check_response_format(example_template("Bo"), "Bo") == []
        assert "[quote]#" in response_format_instructions


class TestNumbering:
    def test_build_number_map_skips_legacy(self):
        entries = [{"id": "a"}, {"content": "legacy"}, {"id": "b"}, {"id": "c"}]
        assert build_number_map(entries) == {1: "a", 2: "b", 3: "c"}
        assert [n for n, _ in number_lines(entries)] == [1, None, 2, 3]

    def test_number_map_is_deterministic(self):
        entries = [{"id": f"m{i}"} for i in range(6)]
        assert build_number_map(entries) == build_number_map(list(entries))

    def test_renumbering_after_removal(self):
        entries = [{"id": "a"}, {"id": "b"}, {"id": "c"}]
        assert build_number_map(entries)[3] == "c"
        assert build_number_map([entries[0], entries[2]])[2] == "c"

    def test_resolve_reference(self):
        number_map = {1: "a"}
        assert resolve_reference(number_map, 1) == "a"
        with pytest.raises(UnresolvedReferenceError):
            resolve_reference(number_map, 2)
        with pytest.raises(UnresolvedReferenceError):
            resolve_reference({}, 1)


class TestFormatCheck:
    def test_missing_tags(self):
        problems = check_response_format("just text")
        assert len(problems) == 2

    def test_name_mismatch(self):
        problems = check_response_format("[char-Bo]\n[messages]\nhi", "Al")
        assert problems == ["Character name mismatch: expected 'Al', got 'Bo'"]

    def test_empty(self):
        assert check_response_format("")


class TestExtraction:
    def test_role_blocks_without_closing_tags(self):
        text = "preamble\n[char-A]\n[messages]\nhi\n[char-B]\n[messages]\nyo"
        blocks = extract_role_blocks(text)
        assert [role for role, _ in blocks] == ["A", "B"]
        assert extract_messages_content(blocks[1][1]).strip() == "yo"

    def test_messages_section_ends_at_boundary(self):
        block = "[messages]\nhello\n[moments]\nposted a photo"
        assert extract_messages_content(block).strip() == "hello"
        assert extract_messages_content("no section") is None

    def test_parse_bubble_types(self):
        assert parse_bubble("[emoji]wave", "A")["type"] == "emoji"
        assert parse_bubble("[image]a cat", "A")["description"] == "a cat"
        assert parse_bubble("[plan]Picnic", "A")["title"] == "Picnic"
        assert parse_bubble("[signature]busy", "A")["content"] == "busy"
        assert parse_bubble("[recall]oops", "A")["type"] == "recalled"
        assert parse_bubble("[quote]#2[reply]yes", "A")["ref"] == 2
        assert parse_bubble("[quote]no number[reply]yes", "A")["type"] == "text"
        assert parse_bubble("plain", "A") == {"role": "A", "type": "text", "content": "plain"}


class TestResponseParser:
    def _log_with(self, *contents):
        log = MessageLog(MemoryStore())
        for i, content in enumerate(contents):
            log.append("c", make_message(LOCAL if i % 2 == 0 else REMOTE, content=content))
        return log

    def test_parse_assigns_ids_and_sender(self, reply):
        parser = ResponseParser()
        msgs = parser.parse(reply("hi", "", "[emoji]wave"), "c", {})
        assert [m["type"] for m in msgs] == ["text", "emoji"]
        assert all(m["sender"] == REMOTE for m in msgs)
        assert len({m["id"] for m in msgs}) == 2

    def test_quote_resolves_through_number_map(self, reply):
        log = self._log_with("first", "second")
        entries = log.load("c")
        parser = ResponseParser(log)
        msgs = parser.parse(reply("[quote]#2[reply]agreed"), "c", build_number_map(entries))
        quoted = msgs[0]["quoted"]
        assert msgs[0]["type"] == "quote"
        assert quoted["id"] == entries[1]["id"]
        assert quoted["summary"] == "second"
        assert msgs[0]["reply"] == "agreed"

    def test_unresolved_quote_degrades_to_text(self, reply):
        log = self._log_with("only")
        parser = ResponseParser(log)
        msgs = parser.parse(reply("[quote]#9[reply]what?"), "c", build_number_map(log.load("c")))
        assert msgs[0]["type"] == "text"
        assert msgs[0]["unresolved_ref"] == 9
        assert msgs[0]["content"] == "[quote]#9[reply]what?"
        assert msgs[0]["sender"] == REMOTE

    def test_quote_of_deleted_message_degrades(self, reply):
        log = self._log_with("only")
        parser = ResponseParser(log)
        msgs = parser.parse(reply("[quote]#1[reply]hm"), "c", {1: "msg_gone"})
        assert msgs[0]["unresolved_ref"] == 1

    def test_strict_parser_raises(self, reply):
        parser = ResponseParser(strict=True)
        with pytest.raises(UnresolvedReferenceError):
            parser.parse(reply("[quote]#3[reply]x"), "c", {1: "a"})

    def test_no_messages_section(self):
        assert ResponseParser().parse("[char-A]\nnothing here", "c", {}) == []
        assert ResponseParser().parse("", "c", {}) == []
