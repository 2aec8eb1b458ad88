# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for recipient CSV parsing."""

import pytest

from mail_scheduler.csv_rows import parse_recipients_csv
from mail_scheduler.errors import ValidationError


def test_parses_rows_in_order():
    rows = parse_recipients_csv(
        "email,subject,body\n"
        "a@example.com,Hello A,Body A\n"
        "b@example.com,,\n"
    )
    assert [r.recipient for r in rows] == ["a@example.com", "b@example.com"]
    assert rows[0].subject == "Hello A"
    assert rows[0].body == "Body A"
    assert rows[1].subject is None
    assert rows[1].body is None


def test_header_is_case_insensitive_and_values_trimmed():
    rows = parse_recipients_csv("Name, EMAIL ,Subject\nAlice,  alice@example.com , Hi \n")
    assert rows[0].recipient == "alice@example.com"
    assert rows[0].subject == "Hi"


def test_blank_lines_are_skipped():
    rows = parse_recipients_csv("\nemail\n\na@example.com\n\n\nb@example.com\n")
    assert len(rows) == 2


def test_empty_email_is_kept_as_empty_recipient():
    rows = parse_recipients_csv("email,subject\n,Orphan subject\nc@example.com,x\n")
    assert [r.recipient for r in rows] == ["", "c@example.com"]


def test_quoted_fields_with_commas_and_newlines():
    rows = parse_recipients_csv('email,body\na@example.com,"Hello, world\nsecond line"\n')
    assert rows[0].body == "Hello, world\nsecond line"


def test_missing_email_column():
    with pytest.raises(ValidationError, match="email"):
        parse_recipients_csv("name,subject\nAlice,Hi\n")


def test_field_count_mismatch():
    with pytest.raises(ValidationError, match="expected 2 fields"):
        parse_recipients_csv("email,subject\na@example.com,Hi,extra\n")


def test_empty_text_gives_no_rows():
    assert parse_recipients_csv("") == []
