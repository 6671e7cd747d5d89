from airdropper.cli import main

raise SystemExit(main())
