import os, sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from Utils.MSSQL import MSSQLUtil
from Utils.OUTPUT import OutputUtil

class FakeMSSQL:
	"""
	Stands in for impacket's tds.MSSQL: answers sql_query() from canned responses.

	Responses are matched by substring, first match wins. rows and errors may be
	callables receiving the query.
	"""
	def __init__(self):
		self.responses = []
		self.queries = []
		self.rows = []
		self.colMeta = []
		self.errors = []
		self.infos = []
		self.disconnected = False

	def respond(self, match, rows = None, errors = None, infos = None, columns = None):
		self.responses.append((match, rows, errors, infos, columns))

	def sql_query(self, query):
		self.queries.append(query)
		self.rows, self.errors, self.infos, self.colMeta = [], [], [], []
		for match, rows, errors, infos, columns in self.responses:
			if match not in query:
				continue
			rows = rows(query) if callable(rows) else rows
			errors = errors(query) if callable(errors) else errors
			self.rows = [dict(row) for row in (rows or [])]
			self.errors = list(errors or [])
			self.infos = list(infos or [])
			self.colMeta = [{'Name': c} for c in (columns or [])]
			break
		return self.rows

	def printReplies(self, error_logger = None, info_logger = None):
		for e in self.errors:
			error_logger(e)
		for i in self.infos:
			info_logger(i)

	def disconnect(self):
		self.disconnected = True

@pytest.fixture
def fake():
	return FakeMSSQL()

@pytest.fixture
def ctx(fake):
	return MSSQLUtil.DatabaseContext(fake, 'SQL01')

@pytest.fixture(autouse = True)
def reset_globals():
	OutputUtil.OUTPUT_FORMAT = 'markdown'
	MSSQLUtil.THROTTLE = None
	MSSQLUtil.THROTTLE_DEEP = None
	yield
	OutputUtil.OUTPUT_FORMAT = 'markdown'
	MSSQLUtil.THROTTLE = None
	MSSQLUtil.THROTTLE_DEEP = None
