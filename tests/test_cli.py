"""Command-line tests for md2v2ex.main."""
import io
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).parent.parent))

from md2v2ex import __version__, main

SAMPLE = '# Title\n\n**bold** [site](https://example.com)\n\n| A | B |\n|---|---|\n| 1 | 2 |\n'


def run(argv, stdin_text=None):
    """Run main() and return (exit_code, stdout, stderr)."""
    out, err = io.StringIO(), io.StringIO()
    code = 0
    stdin = io.StringIO(stdin_text if stdin_text is not None else '')
    with mock.patch('sys.stdin', stdin), redirect_stdout(out), redirect_stderr(err):
        try:
            main(argv)
        except SystemExit as exc:
            code = exc.code
    return code, out.getvalue(), err.getvalue()


class CliTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.input = self.tmp / 'input.md'
        self.input.write_text(SAMPLE, encoding='utf-8')

    def tearDown(self):
        self._tmp.cleanup()


class TestOutput(CliTestCase):
    def test_file_to_stdout(self):
        code, out, err = run([str(self.input)])
        self.assertEqual(code, 0)
        self.assertEqual(out, 'Title\n======\n\n[b]bold[/b] site\nhttps://example.com\n\nA B\n1 2\n')
        self.assertEqual(err, '')

    def test_output_file(self):
        target = self.tmp / 'out.txt'
        code, out, err = run([str(self.input), '-o', str(target)])
        self.assertEqual(code, 0)
        self.assertEqual(out, '')
        self.assertIn('Written to', err)
        self.assertTrue(target.read_text(encoding='utf-8').startswith('Title\n======'))

    def test_stdin(self):
        code, out, _ = run([], stdin_text='- [x] done\n')
        self.assertEqual(code, 0)
        self.assertEqual(out, '[x] done\n')

    def test_stdin_with_options(self):
        code, out, _ = run(['--table=strip', '--links=url'], stdin_text=SAMPLE)
        self.assertEqual(code, 0)
        self.assertEqual(out, 'Title\n======\n\n[b]bold[/b] https://example.com\n')


class TestOptions(CliTestCase):
    def test_no_bold(self):
        _, out, _ = run([str(self.input), '--no-bold', '--links=label'])
        self.assertIn('bold site', out)
        self.assertNotIn('[b]', out)

    def test_table_keep(self):
        _, out, _ = run([str(self.input), '--table=keep'])
        self.assertIn('| A | B |\n| 1 | 2 |', out)

    def test_heading_separator(self):
        _, out, _ = run([str(self.input), '--heading-separator=dashes'])
        self.assertTrue(out.startswith('Title\n------'))

    def test_raw(self):
        _, out, _ = run([str(self.input), '--raw'])
        self.assertEqual(out, SAMPLE + '\n')

    def test_version(self):
        code, out, _ = run(['--version'])
        self.assertEqual(code, 0)
        self.assertIn(__version__, out)

    def test_warnings_logged(self):
        with self.assertLogs('md2v2ex', level='WARNING') as logs:
            code, _, _ = run([str(self.input), '--warnings'])
        self.assertEqual(code, 0)
        self.assertEqual(len(logs.records), 1)
        self.assertIn('Tables', logs.output[0])


class TestErrors(CliTestCase):
    def test_undecodable_stdin(self):
        stdin = mock.Mock()
        stdin.read.side_effect = UnicodeDecodeError('utf-8', b'\xff', 0, 1, 'invalid start byte')
        err = io.StringIO()
        with mock.patch('sys.stdin', stdin), redirect_stdout(io.StringIO()) as out, redirect_stderr(err):
            with self.assertRaises(SystemExit) as cm:
                main(['--table=keep'])
        self.assertEqual(cm.exception.code, 1)
        self.assertEqual(out.getvalue(), '')
        self.assertIn('Error: cannot read standard input', err.getvalue())

    def test_invalid_links(self):
        code, out, err = run([str(self.input), '--links=markdown'])
        self.assertEqual(code, 1)
        self.assertEqual(out, '')
        self.assertIn('invalid choice', err)

    def test_invalid_table(self):
        code, _, err = run([str(self.input), '--table=html'])
        self.assertEqual(code, 1)
        self.assertIn('--table', err)

    def test_missing_file(self):
        code, out, err = run([str(self.tmp / 'missing.md')])
        self.assertEqual(code, 1)
        self.assertEqual(out, '')
        self.assertIn('file not found', err)

    def test_unwritable_output(self):
        target = self.tmp / 'no' / 'such' / 'dir' / 'out.txt'
        code, _, err = run([str(self.input), '-o', str(target)])
        self.assertEqual(code, 1)
        self.assertIn('Error: cannot write', err)
        self.assertFalse(target.exists())


if __name__ == '__main__':
    unittest.main()
