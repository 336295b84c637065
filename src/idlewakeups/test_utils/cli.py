import shlex
import sys

import delegator


class CliHelpers(object):
    def __init__(self, cwd=None):
        self._cwd = cwd

    def run(self, args):
        command = "{} -m idlewakeups.cli {}".format(
            shlex.quote(sys.executable), args)
        return delegator.run(command, cwd=self._cwd)

    def run_command(self, args):
        process = self.run(args)
        assert process.return_code == 0, process.err
        return process.out

    def list_processes(self, trace_file):
        out = self.run_command("{} --list-processes".format(shlex.quote(trace_file)))
        return [line for line in out.splitlines()[2:] if line]

    def export(self, trace_file, output_file, *extra_args):
        command = "{} -o {} {}".format(shlex.quote(trace_file),
                                       shlex.quote(output_file),
                                       ' '.join(extra_args))
        return self.run_command(command)
