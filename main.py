# main.py
#
# Send a small file to another machine using nothing but sound.
#
# The sender plays a handshake tone, then the file (name, type, size and
# bytes, plus a CRC-8) as a stream of 16-FSK tones, then an end marker.
# The receiver listens on the microphone, syncs on the handshake, decodes
# the tones back into bytes and checks the CRC before saving the file.
#
# Dependencies:
# pip install sounddevice soundfile numpy scipy

import argparse
import logging
import sys
import threading

from sonicdrop.config import DEFAULT_CONFIG, DEFAULT_TUNING
from sonicdrop.errors import SetupError, SonicDropError
from sonicdrop.files import load_file, save_decoded_file
from sonicdrop.frame import encode_file_to_symbols
from sonicdrop.modem import Receiver, TransmissionStatus, Transmitter
from sonicdrop.receiver import OutcomeStatus
from sonicdrop.scheduler import estimate_duration, render_schedule, schedule_transmission
from sonicdrop.stream import decode_recording
from sonicdrop.wavio import read_wav, write_wav


def _wait_for_enter(stop_flag):
    """Sets `stop_flag` when the user presses Enter."""
    def _reader():
        try:
            input()
        except EOFError:
            return
        stop_flag.set()
    threading.Thread(target=_reader, daemon=True).start()


def _report_outcome(outcome, output_dir):
    if outcome is None:
        print("No result.")
        return 1
    if outcome.status is OutcomeStatus.COMPLETE:
        path = save_decoded_file(outcome.frame, output_dir)
        meta = outcome.frame.metadata
        print(f"\n--- SUCCESS! ---\nReceived {meta.name} ({meta.mime_type}, {meta.size} bytes)")
        print(f"Saved to {path}\n----------------\n")
        return 0
    print(f"\n--- RECEIVE FAILED ---\n{outcome.message}")
    if outcome.status is OutcomeStatus.CHECKSUM_FAILED:
        print("The audio link was too noisy. Move the devices closer and send again.")
    return 1


# --- Sending ---

def send_file(path):
    try:
        payload, metadata = load_file(path)
    except OSError as e:
        print(f"Error: cannot read {path}: {e}")
        return 1

    try:
        handle = Transmitter(DEFAULT_CONFIG).transmit(payload, metadata)
    except SonicDropError as e:
        print(f"Error: {e}")
        return 1

    print(f"Sending {metadata.name} ({metadata.size} bytes), about "
          f"{estimate_duration(metadata):.1f} s. Press Enter to cancel.")
    stop_flag = threading.Event()
    _wait_for_enter(stop_flag)

    while not handle.done:
        handle.wait(timeout=0.25)
        if stop_flag.is_set():
            handle.cancel()
        progress = handle.progress()
        sys.stdout.write(f"\r{progress.percent:5.1f}%  ({progress.symbols_sent}/{progress.total_symbols} symbols)")
        sys.stdout.flush()

    print()
    if handle.status is TransmissionStatus.ERROR:
        print(f"Transmission failed: {handle.error}")
        return 1
    print(f"Transmission {handle.status.value}.")
    return 0


def encode_to_wav(path, wav_path):
    try:
        payload, metadata = load_file(path)
        symbols = encode_file_to_symbols(payload, metadata)
    except (OSError, SonicDropError) as e:
        print(f"Error: {e}")
        return 1
    schedule = schedule_transmission(symbols, DEFAULT_CONFIG)
    write_wav(wav_path, render_schedule(schedule, DEFAULT_CONFIG), DEFAULT_CONFIG.sample_rate)
    print(f"Wrote {len(symbols)} symbols ({schedule.end_time:.1f} s) to {wav_path}")
    return 0


# --- Receiving ---

def receive_file(output_dir='.', monitor=False):
    last_status = []

    def on_snapshot(snapshot):
        if not last_status or last_status[-1] != snapshot.status:
            last_status.append(snapshot.status)
            print(f"\n[{snapshot.status}]", end='')
        if snapshot.status in ('receiving_header', 'receiving_payload'):
            sys.stdout.write(f"\r[{snapshot.status}] {snapshot.progress:5.1f}%  signal {snapshot.signal_strength:.2f}")
            sys.stdout.flush()

    print("\nListening for data... Press Enter to stop.")
    stop_flag = threading.Event()
    _wait_for_enter(stop_flag)

    try:
        with Receiver(DEFAULT_CONFIG, DEFAULT_TUNING, monitor=monitor, on_snapshot=on_snapshot) as receiver:
            while receiver.wait(timeout=0.25) is None:
                if stop_flag.is_set():
                    break
    except SonicDropError as e:
        print(f"\nError: {e}")
        return 1

    print()
    return _report_outcome(receiver.outcome, output_dir)


def decode_wav(wav_path, output_dir='.'):
    try:
        samples, sample_rate = read_wav(wav_path)
    except (OSError, RuntimeError) as e:  # soundfile raises LibsndfileError, a RuntimeError
        print(f"Error: cannot read {wav_path}: {e}")
        return 1
    try:
        config = DEFAULT_CONFIG.with_sample_rate(sample_rate)
        DEFAULT_TUNING.check_compatible(config)
    except ValueError as e:
        error = SetupError(f"Cannot decode a {sample_rate} Hz recording: {e}")
        print(f"Error: {error}")
        return 1
    outcome = decode_recording(samples, config, DEFAULT_TUNING)
    return _report_outcome(outcome, output_dir)


# --- Main Application Logic ---

def interactive():
    """Menu loop for use without arguments."""
    print("--- sonicdrop: file transfer over sound ---")
    while True:
        choice = input("\nChoose an option:\n1. Send a file\n2. Receive a file\n3. Exit\n> ").strip()
        if choice == '1':
            path = input("File to send: ").strip()
            if path:
                send_file(path)
            else:
                print("No file given.")
        elif choice == '2':
            receive_file()
        elif choice == '3':
            break
        else:
            print("Invalid choice. Please enter 1, 2, or 3.")
    print("Goodbye!")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description="Transfer a small file over sound")
    parser.add_argument('-v', '--verbose', action='store_true', help="show protocol logs")
    sub = parser.add_subparsers(dest='command')

    p = sub.add_parser('send', help="play a file through the speaker")
    p.add_argument('file')

    p = sub.add_parser('receive', help="listen on the microphone and save the file")
    p.add_argument('-o', '--output', default='.', help="directory for the received file")
    p.add_argument('--monitor', action='store_true', help="pass captured audio through to the output")

    p = sub.add_parser('encode', help="render a file transmission to a WAV file")
    p.add_argument('file')
    p.add_argument('wav')

    p = sub.add_parser('decode', help="decode a recorded transmission from a WAV file")
    p.add_argument('wav')
    p.add_argument('-o', '--output', default='.', help="directory for the received file")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )

    if args.command == 'send':
        return send_file(args.file)
    if args.command == 'receive':
        return receive_file(args.output, args.monitor)
    if args.command == 'encode':
        return encode_to_wav(args.file, args.wav)
    if args.command == 'decode':
        return decode_wav(args.wav, args.output)
    return interactive()


if __name__ == '__main__':
    sys.exit(main())
