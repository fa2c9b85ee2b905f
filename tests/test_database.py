import os
import shutil
import tempfile
import unittest

from sqlalchemy.exc import IntegrityError

from database import connect


class DatabaseTests(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        # Parent directories are created on connect
        self.database = connect(os.path.join(self.tmp_dir, 'nested', 'tracker.db'))
        self.database.run('CREATE TABLE parent (id INTEGER PRIMARY KEY, name TEXT)')
        self.database.run(
            'CREATE TABLE child (id INTEGER PRIMARY KEY, '
            'parent_id INTEGER NOT NULL REFERENCES parent(id) ON DELETE CASCADE)'
        )

    def tearDown(self):
        self.database.close()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_run_reports_last_id_and_changes(self):
        first = self.database.run('INSERT INTO parent (name) VALUES (?)', ['a'])
        second = self.database.run('INSERT INTO parent (name) VALUES (?)', ['b'])
        self.assertEqual(first.last_id, 1)
        self.assertEqual(second.last_id, 2)

        result = self.database.run('UPDATE parent SET name = ?', ['z'])
        self.assertEqual(result.changes, 2)

    def test_get_and_all_return_dicts(self):
        self.database.run('INSERT INTO parent (name) VALUES (?)', ['a'])
        self.database.run('INSERT INTO parent (name) VALUES (?)', ['b'])

        self.assertEqual(self.database.get('SELECT name FROM parent WHERE id = ?', [2]), {'name': 'b'})
        self.assertIsNone(self.database.get('SELECT name FROM parent WHERE id = ?', [99]))
        rows = self.database.all('SELECT id, name FROM parent ORDER BY id')
        self.assertEqual(rows, [{'id': 1, 'name': 'a'}, {'id': 2, 'name': 'b'}])

    def test_foreign_keys_are_enforced(self):
        with self.assertRaises(IntegrityError):
            self.database.run('INSERT INTO child (parent_id) VALUES (?)', [42])

    def test_foreign_key_cascade(self):
        parent = self.database.run('INSERT INTO parent (name) VALUES (?)', ['a'])
        self.database.run('INSERT INTO child (parent_id) VALUES (?)', [parent.last_id])

        self.database.run('DELETE FROM parent WHERE id = ?', [parent.last_id])

        self.assertEqual(self.database.all('SELECT * FROM child'), [])

    def test_transaction_rolls_back_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.database.transaction() as tx:
                tx.run('INSERT INTO parent (name) VALUES (?)', ['a'])
                raise RuntimeError('boom')

        self.assertEqual(self.database.all('SELECT * FROM parent'), [])

    def test_transaction_commits_together(self):
        with self.database.transaction() as tx:
            parent = tx.run('INSERT INTO parent (name) VALUES (?)', ['a'])
            tx.run('INSERT INTO child (parent_id) VALUES (?)', [parent.last_id])

        self.assertEqual(len(self.database.all('SELECT * FROM child')), 1)


if __name__ == '__main__':
    unittest.main()
